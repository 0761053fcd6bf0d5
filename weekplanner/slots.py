"""Conflict checks and free-slot search on the fixed daily grid.

Every function here is pure: it reads the tasks it is given and never touches
the planner.
"""
from __future__ import annotations

import math
import re
from typing import Iterable, List, Optional

from .config import GridConfig
from .models import Task

_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})$")

DEFAULT_GRID = GridConfig()


def parse_time(value: Optional[str]) -> Optional[int]:
    """``"HH:MM"`` to minutes since midnight, None when malformed."""
    if not value:
        return None
    match = _TIME_RE.match(value.strip())
    if not match:
        return None
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        return None
    return hours * 60 + minutes


def format_time(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def is_slot_available(
    start_time: str,
    duration: int,
    day_tasks: Iterable[Task],
    exclude_id: Optional[str] = None,
    grid: GridConfig = DEFAULT_GRID,
) -> bool:
    """True when ``[start, start + duration)`` fits the grid and overlaps nothing."""
    start = parse_time(start_time)
    if start is None or duration <= 0:
        return False
    end = start + duration
    if start < grid.day_start or end > grid.day_end:
        return False

    for task in day_tasks:
        if exclude_id is not None and task.id == exclude_id:
            continue
        task_start = parse_time(task.scheduled_time)
        if task_start is None:
            continue
        task_end = task_start + task.duration
        if start < task_end and end > task_start:
            return False
    return True


def get_slot_index_from_time(time_str: str, grid: GridConfig = DEFAULT_GRID) -> Optional[int]:
    minutes = parse_time(time_str)
    if minutes is None:
        return None
    hours, mins = divmod(minutes, 60)
    return (hours - grid.start_hour) * grid.slots_per_hour + mins // grid.slot_duration


def get_time_from_slot_index(index: int, grid: GridConfig = DEFAULT_GRID) -> Optional[str]:
    total = grid.day_start + index * grid.slot_duration
    if total < 0 or total >= 24 * 60:
        return None
    return format_time(total)


def grid_times(grid: GridConfig = DEFAULT_GRID) -> List[str]:
    """Every grid-aligned start time of the day, earliest first."""
    return [get_time_from_slot_index(i, grid) for i in range(grid.cell_count)]


def find_nearest_available_start(
    desired_time: str,
    duration: int,
    day_tasks: Iterable[Task],
    exclude_id: Optional[str] = None,
    grid: GridConfig = DEFAULT_GRID,
) -> Optional[str]:
    """Closest free grid start to ``desired_time``; earlier wins a tie.

    Returns None when no start in the day can hold ``duration`` minutes.
    """
    desired = get_slot_index_from_time(desired_time, grid)
    if desired is None or duration <= 0:
        return None
    day_tasks = list(day_tasks)

    slots_needed = math.ceil(duration / grid.slot_duration)
    max_start = max(0, grid.cell_count - slots_needed)
    clamped = min(max(0, desired), max_start)

    def try_index(idx: int) -> Optional[str]:
        time_str = get_time_from_slot_index(idx, grid)
        if time_str and is_slot_available(time_str, duration, day_tasks, exclude_id, grid):
            return time_str
        return None

    found = try_index(clamped)
    if found:
        return found
    for step in range(1, max_start + 1):
        earlier = clamped - step
        if earlier >= 0:
            found = try_index(earlier)
            if found:
                return found
        later = clamped + step
        if later <= max_start:
            found = try_index(later)
            if found:
                return found
    return None
