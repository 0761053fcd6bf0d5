"""Task id encoding.

Three shapes of id name a task:

* ``task_7``                      a backlog (queue) task
* ``template_3_2026-W05``         the occurrence of a template in one week
* ``week_2026-W05_inst_12``       a one-off row of a week (stable instance id)
* ``week_2026-W05_idx_2``         same, addressed by position (old data only)

``parse_task_id`` and ``format_task_id`` are the only places that know the
string layout; everything else works with the reference types below.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional, Union

WEEK_TOKEN = r"\d{4}-W\d{2}"

_WEEKLY_RE = re.compile(rf"^week_(?P<week>{WEEK_TOKEN})_(?P<suffix>.+)$")
_TEMPLATE_RE = re.compile(rf"^(?P<template>.+)_(?P<week>{WEEK_TOKEN})$")
_POSITIONAL_RE = re.compile(r"^(?:idx|task)_(\d+)$")

INSTANCE_PREFIX = "inst_"


@dataclass(frozen=True)
class StandaloneRef:
    task_id: str


@dataclass(frozen=True)
class TemplateOccurrenceRef:
    template_id: str
    week_id: str


@dataclass(frozen=True)
class WeeklyOccurrenceRef:
    """A week row, by stable ``instance_id`` or, for old rows, by ``index``."""

    week_id: str
    instance_id: Optional[str] = None
    index: Optional[int] = None


TaskRef = Union[StandaloneRef, TemplateOccurrenceRef, WeeklyOccurrenceRef]


def parse_task_id(task_id: str) -> Optional[TaskRef]:
    """Decode an id string; None when it has no recognizable shape.

    A string that is neither a week row nor a template occurrence is taken as
    a queue id. Callers that own the queue should look the raw id up there
    first, since a queue id wins over any other reading of the same string.
    """
    if not task_id or not isinstance(task_id, str):
        return None

    match = _WEEKLY_RE.match(task_id)
    if match:
        week, suffix = match.group("week"), match.group("suffix")
        if suffix.startswith(INSTANCE_PREFIX) and len(suffix) > len(INSTANCE_PREFIX):
            return WeeklyOccurrenceRef(week_id=week, instance_id=suffix)
        positional = _POSITIONAL_RE.match(suffix)
        if positional:
            return WeeklyOccurrenceRef(week_id=week, index=int(positional.group(1)))
        return None

    match = _TEMPLATE_RE.match(task_id)
    if match:
        return TemplateOccurrenceRef(template_id=match.group("template"), week_id=match.group("week"))

    if task_id.startswith("week_"):
        return None
    return StandaloneRef(task_id)


def format_task_id(ref: TaskRef) -> str:
    if isinstance(ref, StandaloneRef):
        return ref.task_id
    if isinstance(ref, TemplateOccurrenceRef):
        return f"{ref.template_id}_{ref.week_id}"
    if isinstance(ref, WeeklyOccurrenceRef):
        if ref.instance_id:
            return f"week_{ref.week_id}_{ref.instance_id}"
        if ref.index is not None:
            return f"week_{ref.week_id}_idx_{ref.index}"
        raise ValueError("weekly reference needs an instance id or an index")
    raise TypeError(f"not a task reference: {ref!r}")
