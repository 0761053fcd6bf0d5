"""Pydantic models for the planner document and the task views built from it.

Stored records serialize with camelCase keys (``scheduledDay``, ``weeklyInstances``)
so documents written by earlier versions of the planner load unchanged.
"""
from __future__ import annotations

import time
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag, field_validator, model_validator
from pydantic.alias_generators import to_camel

TIME_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


class PlannerError(Exception):
    """Base class for planner errors raised to callers."""


class InvalidDepartmentPath(PlannerError, ValueError):
    pass


class ImportFormatError(PlannerError, ValueError):
    pass


class Day(str, Enum):
    MONDAY = "monday"
    TUESDAY = "tuesday"
    WEDNESDAY = "wednesday"
    THURSDAY = "thursday"
    FRIDAY = "friday"
    SATURDAY = "saturday"
    SUNDAY = "sunday"

    @classmethod
    def parse(cls, value: Union[str, "Day"]) -> "Day":
        """Accept full names or three-letter abbreviations, any case."""
        if isinstance(value, Day):
            return value
        key = value.strip().lower()
        for day in cls:
            if day.value == key or day.value[:3] == key:
                return day
        raise ValueError(f"unknown day: {value!r}")

    @property
    def index(self) -> int:
        return list(Day).index(self)

    @property
    def label(self) -> str:
        return self.value[:3].capitalize()


def _now_ms() -> int:
    return int(time.time() * 1000)


class _Record(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    @field_validator("hierarchy", mode="before", check_fields=False)
    @classmethod
    def _coerce_hierarchy(cls, value: Any) -> Any:
        return [] if value is None else value


class _Scheduled(_Record):
    scheduled_day: Optional[Day] = None
    scheduled_time: Optional[str] = Field(None, pattern=TIME_PATTERN)

    @field_validator("scheduled_day", "scheduled_time", mode="before")
    @classmethod
    def _blank_is_none(cls, value: Any) -> Any:
        return None if value == "" else value

    @model_validator(mode="after")
    def _schedule_pair(self):
        if (self.scheduled_day is None) != (self.scheduled_time is None):
            raise ValueError("scheduledDay and scheduledTime must be set together")
        return self

    @property
    def is_scheduled(self) -> bool:
        return self.scheduled_day is not None


class Template(_Scheduled):
    """A recurring task definition, independent of any week."""

    id: str
    title: str = Field(..., min_length=1)
    goal: str = ""
    hierarchy: List[str] = Field(default_factory=list)
    duration: int = Field(..., gt=0)
    notes: str = ""


class TemplateInstance(_Scheduled):
    """Per-week row linked to a template; only override fields live here."""

    template_id: str
    completed: bool = False
    notes: str = ""


class StandaloneInstance(_Scheduled):
    """Per-week one-off occurrence carrying all of its own fields."""

    instance_id: Optional[str] = None
    title: str = Field(..., min_length=1)
    goal: str = ""
    hierarchy: List[str] = Field(default_factory=list)
    duration: int = Field(..., gt=0)
    completed: bool = False
    notes: str = ""
    source_task_id: Optional[str] = None


def _instance_kind(value: Any) -> str:
    if isinstance(value, dict):
        linked = value.get("templateId") or value.get("template_id")
        return "template" if linked else "standalone"
    return "template" if isinstance(value, TemplateInstance) else "standalone"


InstanceRecord = Annotated[
    Union[Annotated[TemplateInstance, Tag("template")], Annotated[StandaloneInstance, Tag("standalone")]],
    Discriminator(_instance_kind),
]


class WeekInstances(_Record):
    tasks: List[InstanceRecord] = Field(default_factory=list)


class QueueTask(_Scheduled):
    """Backlog task living outside any week."""

    id: str
    title: str = Field(..., min_length=1)
    goal: str = ""
    hierarchy: List[str] = Field(default_factory=list)
    duration: int = Field(..., gt=0)
    notes: str = ""
    completed: bool = False
    created_at: int = Field(default_factory=_now_ms)


class TaskInput(BaseModel):
    """Fields accepted by ``Planner.add_task``."""

    title: str = Field(..., min_length=1)
    goal: str = ""
    hierarchy: List[str] = Field(default_factory=list)
    duration: int = Field(60, gt=0)
    notes: str = ""

    model_config = {"extra": "forbid"}


class TaskPatch(BaseModel):
    """Fields accepted by ``Planner.update_task``; only the keys given are applied."""

    title: Optional[str] = Field(None, min_length=1)
    goal: Optional[str] = None
    hierarchy: Optional[List[str]] = None
    duration: Optional[int] = Field(None, gt=0)
    notes: Optional[str] = None
    completed: Optional[bool] = None
    scheduled_day: Optional[Day] = None
    scheduled_time: Optional[str] = Field(None, pattern=TIME_PATTERN)

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


TaskKind = Literal["queue", "template", "week"]


class Task(BaseModel):
    """Read-only merged view of a queue task, template occurrence or week row."""

    id: str
    kind: TaskKind
    title: str
    goal: str = ""
    hierarchy: Tuple[str, ...] = ()
    duration: int
    notes: str = ""
    completed: bool = False
    scheduled_day: Optional[Day] = None
    scheduled_time: Optional[str] = None
    week_id: Optional[str] = None
    template_id: Optional[str] = None

    model_config = {"extra": "forbid", "frozen": True}


class PlannerDocument(_Record):
    """The single persisted blob.

    Unknown top-level keys (written by other parts of the application) are kept
    so a round trip through the planner never drops them.
    """

    tasks: List[QueueTask] = Field(default_factory=list)
    next_id: int = 1
    templates: List[Template] = Field(default_factory=list)
    weekly_instances: Dict[str, WeekInstances] = Field(default_factory=dict)
    goals: Dict[str, str] = Field(default_factory=dict)
    # a document created at the current schema has nothing left to migrate
    migrated: bool = True
    schema_version: int = 3

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    def to_json_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class ExportEnvelope(BaseModel):
    version: str
    exported_at: str = Field(..., alias="exportedAt")
    data: Dict[str, Any]

    model_config = ConfigDict(populate_by_name=True)
