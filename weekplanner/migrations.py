"""Schema upgrades for stored planner documents.

Versions:

1. flat ``tasks`` list, scheduled tasks carry their own day and time
2. recurring templates plus per-week instance containers (``migrated`` flag)
3. normalized v2: clean week containers, bounded hierarchies, repaired id counter

Every step is a pure ``dict -> dict`` function; the input is never modified.
"""
from __future__ import annotations

import copy
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Tuple

logger = logging.getLogger(__name__)

CURRENT_VERSION = 3
DEFAULT_DURATION = 60

_NUMERIC_ID_RE = re.compile(r"^(?:task|template|inst)_(\d+)$")


@dataclass(frozen=True)
class MigrationContext:
    current_week_id: str
    max_dept_levels: int = 4


def _as_list(value: Any) -> List[Any]:
    return value if isinstance(value, list) else []


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_int(value: Any, default: int) -> int:
    # bool is an int subclass; a stored true/false is not a counter
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return default


def detect_version(raw: Dict[str, Any]) -> int:
    """Stored schema version; only the ``migrated`` flag marks a pre-versioned v2 document."""
    version = raw.get("schemaVersion")
    if isinstance(version, int) and not isinstance(version, bool) and version > 0:
        return version
    if raw.get("migrated") is True:
        return 2
    return 1


def migrate_v1_to_v2(raw: Dict[str, Any], ctx: MigrationContext) -> Dict[str, Any]:
    """Turn every scheduled flat task into a template linked from the current week.

    Completion and notes of the original task seed the current week's row.
    Unscheduled tasks stay in the queue untouched.
    """
    doc = copy.deepcopy(raw)
    if doc.get("migrated") is True:
        doc["schemaVersion"] = 2
        return doc

    tasks = _as_list(doc.get("tasks"))
    next_id = max(_as_int(doc.get("nextId"), 1), 1)
    templates = list(_as_list(doc.get("templates")))
    instances = []
    queue = []

    for task in tasks:
        if not isinstance(task, dict):
            continue
        if not (task.get("scheduledDay") and task.get("scheduledTime")):
            queue.append(task)
            continue
        template_id = f"template_{next_id}"
        next_id += 1
        templates.append({
            "id": template_id,
            "title": task.get("title") or "Untitled",
            "goal": task.get("goal") or "",
            "hierarchy": _clean_hierarchy(task.get("hierarchy"), ctx.max_dept_levels),
            "duration": task.get("duration") or DEFAULT_DURATION,
            "notes": "",
            "scheduledDay": task["scheduledDay"],
            "scheduledTime": task["scheduledTime"],
        })
        instances.append({
            "templateId": template_id,
            "completed": bool(task.get("completed")),
            "notes": task.get("notes") or "",
            "scheduledDay": task["scheduledDay"],
            "scheduledTime": task["scheduledTime"],
        })

    weekly = _as_dict(doc.get("weeklyInstances"))
    if instances:
        week = _as_dict(weekly.get(ctx.current_week_id))
        week["tasks"] = _as_list(week.get("tasks")) + instances
        weekly[ctx.current_week_id] = week

    doc["weeklyInstances"] = weekly

    doc["tasks"] = queue
    doc["templates"] = templates
    doc["nextId"] = next_id
    doc["migrated"] = True
    doc["schemaVersion"] = 2
    logger.info("migrated %d scheduled tasks into templates for %s", len(instances), ctx.current_week_id)
    return doc


def _clean_hierarchy(value: Any, max_levels: int) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(p) for p in value][:max_levels]


def _numeric_suffix(value: Any) -> int:
    match = _NUMERIC_ID_RE.match(value) if isinstance(value, str) else None
    return int(match.group(1)) if match else 0


def migrate_v2_to_v3(raw: Dict[str, Any], ctx: MigrationContext) -> Dict[str, Any]:
    doc = copy.deepcopy(raw)
    highest = 0

    doc["tasks"] = [t for t in _as_list(doc.get("tasks")) if isinstance(t, dict)]
    for task in doc["tasks"]:
        task["hierarchy"] = _clean_hierarchy(task.get("hierarchy"), ctx.max_dept_levels)
        highest = max(highest, _numeric_suffix(task.get("id")))

    doc["templates"] = [t for t in _as_list(doc.get("templates")) if isinstance(t, dict)]
    for template in doc["templates"]:
        template["hierarchy"] = _clean_hierarchy(template.get("hierarchy"), ctx.max_dept_levels)
        highest = max(highest, _numeric_suffix(template.get("id")))

    weekly = {}
    for week_id, week in _as_dict(doc.get("weeklyInstances")).items():
        cleaned = []
        for record in _as_list(_as_dict(week).get("tasks")):
            if not isinstance(record, dict):
                continue
            if record.get("templateId"):
                highest = max(highest, _numeric_suffix(record["templateId"]))
            else:
                record.pop("templateId", None)
                record["hierarchy"] = _clean_hierarchy(record.get("hierarchy"), ctx.max_dept_levels)
                highest = max(highest, _numeric_suffix(record.get("instanceId")))
            cleaned.append(record)
        weekly[week_id] = {"tasks": cleaned}
    doc["weeklyInstances"] = weekly

    doc["goals"] = {k: v for k, v in _as_dict(doc.get("goals")).items() if isinstance(v, str)}
    doc["nextId"] = max(_as_int(doc.get("nextId"), 1), highest + 1)
    doc["migrated"] = True
    doc["schemaVersion"] = 3
    return doc


Step = Callable[[Dict[str, Any], MigrationContext], Dict[str, Any]]

# (from_version, step) in application order
STEPS: List[Tuple[int, Step]] = [
    (1, migrate_v1_to_v2),
    (2, migrate_v2_to_v3),
]


def upgrade_document(raw: Dict[str, Any], ctx: MigrationContext) -> Tuple[Dict[str, Any], List[int]]:
    """Apply every step newer than ``raw``'s version.

    Returns the upgraded document and the versions it was migrated from.
    A document already at the current version comes back as an equal copy.
    """
    doc = copy.deepcopy(raw)
    applied = []
    version = detect_version(doc)
    for from_version, step in STEPS:
        if version <= from_version:
            doc = step(doc, ctx)
            applied.append(from_version)
            version = from_version + 1
    if applied:
        logger.info("upgraded planner document through steps %s", applied)
    return doc, applied
