"""Department path rewriting across every record of a planner document."""
from __future__ import annotations

import logging
from typing import Iterator, List, Optional, Sequence

from .models import InvalidDepartmentPath, PlannerDocument

logger = logging.getLogger(__name__)

MAX_DEPT_LEVELS = 4


def validate_path(path: Sequence[str], max_levels: int = MAX_DEPT_LEVELS) -> List[str]:
    path = list(path or [])
    if not 1 <= len(path) <= max_levels:
        raise InvalidDepartmentPath(f"department path needs 1 to {max_levels} levels, got {path!r}")
    if any(not isinstance(p, str) or not p.strip() for p in path):
        raise InvalidDepartmentPath(f"department names must be non-empty strings: {path!r}")
    return path


def has_prefix(hierarchy: Sequence[str], prefix: Sequence[str]) -> bool:
    return len(hierarchy) >= len(prefix) and list(hierarchy[: len(prefix)]) == list(prefix)


def rewrite_hierarchy(
    hierarchy: Sequence[str], old_path: Sequence[str], new_path: Optional[Sequence[str]]
) -> List[str]:
    """Swap the ``old_path`` prefix for ``new_path``, keeping the rest.

    Deleting a department (``new_path`` None) clears the whole hierarchy.
    """
    hierarchy = list(hierarchy or [])
    if not has_prefix(hierarchy, old_path):
        return hierarchy
    if new_path is None:
        return []
    return list(new_path) + hierarchy[len(old_path):]


def _records(doc: PlannerDocument) -> Iterator:
    yield from doc.tasks
    yield from doc.templates
    for week in doc.weekly_instances.values():
        for record in week.tasks:
            if hasattr(record, "hierarchy"):
                yield record


def migrate_department(
    doc: PlannerDocument,
    old_path: Sequence[str],
    new_path: Optional[Sequence[str]],
    max_levels: int = MAX_DEPT_LEVELS,
) -> int:
    """Rewrite matching hierarchies in place; returns how many records changed."""
    old_path = validate_path(old_path, max_levels)
    if new_path is not None:
        new_path = validate_path(new_path, max_levels)

    updates = []
    for record in _records(doc):
        updated = rewrite_hierarchy(record.hierarchy, old_path, new_path)
        if updated == record.hierarchy:
            continue
        if len(updated) > max_levels:
            raise InvalidDepartmentPath(
                f"moving {old_path!r} to {new_path!r} makes {record.hierarchy!r} deeper than {max_levels} levels"
            )
        updates.append((record, updated))

    # all-or-nothing: nothing is written until every record passed the depth check
    for record, updated in updates:
        record.hierarchy = updated
    logger.info("department %s -> %s rewrote %d records", old_path, new_path, len(updates))
    return len(updates)
