"""weekplanner - recurring weekly task planner."""
from __future__ import annotations

from .config import GridConfig
from .ids import TemplateOccurrenceRef, StandaloneRef, WeeklyOccurrenceRef, format_task_id, parse_task_id
from .models import Day, ImportFormatError, InvalidDepartmentPath, PlannerError, Task
from .planner import Planner, resolve
from .storage import JsonFileStorage, MemoryStorage
from .weeks import get_previous_week_id, get_week_identifier, get_week_start

__version__ = "0.3.0"

__all__ = [
    "Day",
    "GridConfig",
    "ImportFormatError",
    "InvalidDepartmentPath",
    "JsonFileStorage",
    "MemoryStorage",
    "Planner",
    "PlannerError",
    "StandaloneRef",
    "Task",
    "TemplateOccurrenceRef",
    "WeeklyOccurrenceRef",
    "format_task_id",
    "get_previous_week_id",
    "get_week_identifier",
    "get_week_start",
    "parse_task_id",
    "resolve",
]
