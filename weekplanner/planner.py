"""The planner: recurring templates, per-week instances and the task views over them.

Reads always go stores -> ``resolve``/views -> ``Task``; writes always enter
through a task id, which is decoded once and routed to the record that owns the
field being changed.
"""
from __future__ import annotations

import functools
import logging
import threading
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from pydantic import ValidationError

from . import slots
from .config import EXPORT_VERSION, STORAGE_KEY, GridConfig
from .departments import migrate_department
from .ids import (
    TemplateOccurrenceRef,
    WeeklyOccurrenceRef,
    format_task_id,
    parse_task_id,
)
from .migrations import MigrationContext, upgrade_document
from .models import (
    Day,
    ExportEnvelope,
    ImportFormatError,
    InvalidDepartmentPath,
    PlannerDocument,
    QueueTask,
    StandaloneInstance,
    Task,
    TaskInput,
    TaskPatch,
    Template,
    TemplateInstance,
    WeekInstances,
)
from .storage import KeyValueStorage, load_document, save_document
from .weeks import get_previous_week_id, get_week_identifier, get_week_start

logger = logging.getLogger(__name__)

# patch fields that stay with the week row of a template occurrence
INSTANCE_FIELDS = frozenset({"completed", "notes", "scheduled_day", "scheduled_time"})
SCHEDULE_FIELDS = frozenset({"scheduled_day", "scheduled_time"})
NULLABLE_FIELDS = SCHEDULE_FIELDS

Listener = Callable[[], None]


def resolve(template: Template, instance: TemplateInstance, week_id: str) -> Task:
    """Merge a template with its week row.

    The row wins for completion, notes and (when it has one) the schedule;
    every other field comes from the template.
    """
    schedule_from = instance if instance.is_scheduled else template
    return Task(
        id=format_task_id(TemplateOccurrenceRef(template.id, week_id)),
        kind="template",
        title=template.title,
        goal=template.goal,
        hierarchy=template.hierarchy,
        duration=template.duration,
        notes=instance.notes,
        completed=instance.completed,
        scheduled_day=schedule_from.scheduled_day,
        scheduled_time=schedule_from.scheduled_time,
        week_id=week_id,
        template_id=template.id,
    )


def _week_row_view(record: StandaloneInstance, week_id: str, index: int) -> Task:
    if record.instance_id:
        ref = WeeklyOccurrenceRef(week_id=week_id, instance_id=record.instance_id)
    else:
        ref = WeeklyOccurrenceRef(week_id=week_id, index=index)
    return Task(
        id=format_task_id(ref),
        kind="week",
        title=record.title,
        goal=record.goal,
        hierarchy=record.hierarchy,
        duration=record.duration,
        notes=record.notes,
        completed=record.completed,
        scheduled_day=record.scheduled_day,
        scheduled_time=record.scheduled_time,
        week_id=week_id,
    )


def _queue_view(task: QueueTask) -> Task:
    return Task(
        id=task.id,
        kind="queue",
        title=task.title,
        goal=task.goal,
        hierarchy=task.hierarchy,
        duration=task.duration,
        notes=task.notes,
        completed=task.completed,
        scheduled_day=task.scheduled_day,
        scheduled_time=task.scheduled_time,
    )


def _checklist(notes: str) -> Tuple[int, int]:
    total = done = 0
    for line in (notes or "").split("\n"):
        if "[ ]" in line or "[x]" in line:
            total += 1
            if "[x]" in line:
                done += 1
    return total, done


@dataclass
class _Located:
    """Where a task id points: the record(s) a mutation has to touch."""

    kind: str
    queue_task: Optional[QueueTask] = None
    template: Optional[Template] = None
    instance: Optional[Union[TemplateInstance, StandaloneInstance]] = None
    week: Optional[WeekInstances] = None
    week_id: Optional[str] = None


def _locked(method):
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        with self._lock:
            return method(self, *args, **kwargs)

    return wrapper


class Planner:
    """Owns one planner document and every operation on it.

    Create it with ``Planner.open(storage)`` to load and upgrade stored data.
    Every mutation is written back to ``storage`` before subscribers are told.
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        grid: Optional[GridConfig] = None,
        today: Optional[date] = None,
        key: str = STORAGE_KEY,
        document: Optional[PlannerDocument] = None,
    ) -> None:
        self.storage = storage
        self.grid = grid or GridConfig()
        self.key = key
        self.doc = document if document is not None else PlannerDocument()
        self.current_week_start = get_week_start(today or date.today())
        self._listeners: List[Listener] = []
        self._lock = threading.RLock()

    @classmethod
    def open(
        cls,
        storage: KeyValueStorage,
        grid: Optional[GridConfig] = None,
        today: Optional[date] = None,
        key: str = STORAGE_KEY,
    ) -> "Planner":
        grid = grid or GridConfig()
        today = today or date.today()
        ctx = MigrationContext(get_week_identifier(today), grid.max_dept_levels)
        doc, upgraded = load_document(storage, key, ctx)
        planner = cls(storage, grid=grid, today=today, key=key, document=doc)
        if upgraded:
            planner._flush()
        return planner

    # ------------------------------------------------------------------
    # change notification and persistence
    # ------------------------------------------------------------------

    def subscribe(self, callback: Listener) -> Callable[[], None]:
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def notify(self) -> None:
        for callback in list(self._listeners):
            try:
                callback()
            except Exception:
                logger.exception("error in planner listener")

    def _flush(self) -> bool:
        return save_document(self.storage, self.key, self.doc)

    def _commit(self) -> None:
        self._flush()
        self.notify()

    # ------------------------------------------------------------------
    # current week
    # ------------------------------------------------------------------

    @property
    def current_week_id(self) -> str:
        return get_week_identifier(self.current_week_start)

    def set_current_week(self, value: date) -> None:
        self.current_week_start = get_week_start(value)
        self.notify()

    def get_week_identifier(self, value: date) -> str:
        return get_week_identifier(value)

    # ------------------------------------------------------------------
    # id minting and lookups
    # ------------------------------------------------------------------

    def _mint(self, prefix: str) -> str:
        value = f"{prefix}_{self.doc.next_id}"
        self.doc.next_id += 1
        return value

    def _find_queue(self, task_id: str) -> Optional[QueueTask]:
        return next((t for t in self.doc.tasks if t.id == task_id), None)

    def _find_template(self, template_id: str) -> Optional[Template]:
        return next((t for t in self.doc.templates if t.id == template_id), None)

    def _locate(self, task_id: str) -> Optional[_Located]:
        if not task_id:
            return None
        queued = self._find_queue(task_id)
        if queued is not None:
            return _Located("queue", queue_task=queued)

        ref = parse_task_id(task_id)
        if isinstance(ref, TemplateOccurrenceRef):
            template = self._find_template(ref.template_id)
            week = self.doc.weekly_instances.get(ref.week_id)
            if template is None or week is None:
                return None
            record = next(
                (r for r in week.tasks if isinstance(r, TemplateInstance) and r.template_id == ref.template_id),
                None,
            )
            if record is None:
                return None
            return _Located("template", template=template, instance=record, week=week, week_id=ref.week_id)

        if isinstance(ref, WeeklyOccurrenceRef):
            week = self.doc.weekly_instances.get(ref.week_id)
            if week is None:
                return None
            record = None
            if ref.instance_id is not None:
                record = next(
                    (r for r in week.tasks if isinstance(r, StandaloneInstance) and r.instance_id == ref.instance_id),
                    None,
                )
            elif ref.index is not None and 0 <= ref.index < len(week.tasks):
                # positional ids only ever address rows from before stable ids existed
                candidate = week.tasks[ref.index]
                if isinstance(candidate, StandaloneInstance) and not candidate.instance_id:
                    record = candidate
            if record is None:
                return None
            return _Located("week", instance=record, week=week, week_id=ref.week_id)

        # a StandaloneRef that is not in the queue, or an unreadable id
        return None

    def _view(self, found: _Located) -> Task:
        if found.kind == "queue":
            return _queue_view(found.queue_task)
        if found.kind == "template":
            return resolve(found.template, found.instance, found.week_id)
        index = found.week.tasks.index(found.instance)
        return _week_row_view(found.instance, found.week_id, index)

    # ------------------------------------------------------------------
    # templates and week materialization
    # ------------------------------------------------------------------

    @property
    def template_count(self) -> int:
        return len(self.doc.templates)

    def has_week_instances(self, week_id: str) -> bool:
        return week_id in self.doc.weekly_instances

    def _fresh_week(self) -> WeekInstances:
        return WeekInstances(
            tasks=[
                TemplateInstance(
                    template_id=t.id,
                    completed=False,
                    notes=t.notes,
                    scheduled_day=t.scheduled_day,
                    scheduled_time=t.scheduled_time,
                )
                for t in self.doc.templates
            ]
        )

    def _ensure_week(self, week_id: str) -> Tuple[WeekInstances, bool]:
        week = self.doc.weekly_instances.get(week_id)
        if week is not None:
            return week, False
        week = self._fresh_week()
        self.doc.weekly_instances[week_id] = week
        logger.debug("materialized %s from %d templates", week_id, len(week.tasks))
        return week, True

    @_locked
    def materialize_week(self, week_id: str) -> WeekInstances:
        """Create ``week_id`` from the templates unless it already exists."""
        week, created = self._ensure_week(week_id)
        if created:
            self._flush()
        return week

    @_locked
    def reset_week(self, week_id: str) -> None:
        """Throw away every customization of one week and rebuild it."""
        self.doc.weekly_instances[week_id] = self._fresh_week()
        self._commit()

    def reset_week_to_template(self) -> None:
        self.reset_week(self.current_week_id)

    @_locked
    def promote_week(self, week_id: str) -> int:
        """Make ``week_id``'s tasks the new template set.

        Template-backed tasks keep their template id so the week's own rows
        stay linked; other tasks get new templates. Every other week is
        dropped and rebuilds from the new templates on next access. Returns
        the number of templates.
        """
        tasks = self.get_tasks_for_week(week_id)
        templates = []
        seen = set()
        for task in tasks:
            template_id = task.template_id if task.kind == "template" else None
            if template_id is None or template_id in seen:
                template_id = self._mint("template")
            seen.add(template_id)
            templates.append(
                Template(
                    id=template_id,
                    title=task.title,
                    goal=task.goal,
                    hierarchy=list(task.hierarchy),
                    duration=task.duration,
                    notes=task.notes,
                    scheduled_day=task.scheduled_day,
                    scheduled_time=task.scheduled_time,
                )
            )
        self.doc.templates = templates
        kept = self.doc.weekly_instances.get(week_id)
        self.doc.weekly_instances = {week_id: kept} if kept is not None else {}
        self._commit()
        return len(templates)

    def set_template_from_current_week(self) -> int:
        return self.promote_week(self.current_week_id)

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------

    @_locked
    def get_task(self, task_id: str) -> Optional[Task]:
        found = self._locate(task_id)
        return self._view(found) if found is not None else None

    @_locked
    def get_tasks_for_week(self, week_id: str) -> List[Task]:
        week = self.materialize_week(week_id)
        views = []
        for index, record in enumerate(week.tasks):
            if isinstance(record, TemplateInstance):
                template = self._find_template(record.template_id)
                if template is None:
                    logger.debug("skipping row of missing template %s in %s", record.template_id, week_id)
                    continue
                views.append(resolve(template, record, week_id))
            else:
                views.append(_week_row_view(record, week_id, index))
        return views

    def get_tasks_for_day(self, day: Union[Day, str], week_id: Optional[str] = None) -> List[Task]:
        day = Day.parse(day)
        return [t for t in self.get_tasks_for_week(week_id or self.current_week_id) if t.scheduled_day == day]

    def get_queue_tasks(self) -> List[Task]:
        return [_queue_view(t) for t in self.doc.tasks if not t.is_scheduled]

    def get_scheduled_tasks(self) -> List[Task]:
        return [_queue_view(t) for t in self.doc.tasks if t.is_scheduled]

    @_locked
    def get_all_tasks(self) -> List[Task]:
        """Every queue task plus the current week's rows not already listed."""
        week_id = self.current_week_id
        week = self.materialize_week(week_id)
        queue_ids = {t.id for t in self.doc.tasks}
        from_queue = {
            r.source_task_id for r in week.tasks if isinstance(r, StandaloneInstance) and r.source_task_id in queue_ids
        }
        result = [_queue_view(t) for t in self.doc.tasks]
        for index, record in enumerate(week.tasks):
            if isinstance(record, TemplateInstance):
                template = self._find_template(record.template_id)
                if template is not None:
                    result.append(resolve(template, record, week_id))
            elif record.source_task_id not in from_queue:
                result.append(_week_row_view(record, week_id, index))
        return result

    # ------------------------------------------------------------------
    # slot checks on the live week
    # ------------------------------------------------------------------

    def is_slot_available(
        self,
        day: Union[Day, str],
        start_time: str,
        duration: int,
        exclude_id: Optional[str] = None,
        week_id: Optional[str] = None,
    ) -> bool:
        day_tasks = self.get_tasks_for_day(day, week_id)
        return slots.is_slot_available(start_time, duration, day_tasks, exclude_id, self.grid)

    def find_nearest_available_start(
        self,
        day: Union[Day, str],
        desired_time: str,
        duration: int,
        exclude_id: Optional[str] = None,
        week_id: Optional[str] = None,
    ) -> Optional[str]:
        day_tasks = self.get_tasks_for_day(day, week_id)
        return slots.find_nearest_available_start(desired_time, duration, day_tasks, exclude_id, self.grid)

    def _check_schedule(self, day: Union[Day, str], time_str: str) -> Optional[Tuple[Day, str]]:
        try:
            parsed_day = Day.parse(day)
        except ValueError:
            return None
        minutes = slots.parse_time(time_str)
        if minutes is None or not self.grid.day_start <= minutes < self.grid.day_end:
            return None
        return parsed_day, slots.format_time(minutes)

    # ------------------------------------------------------------------
    # mutations
    # ------------------------------------------------------------------

    def _check_hierarchy(self, hierarchy: Sequence[str]) -> List[str]:
        hierarchy = list(hierarchy or [])
        if len(hierarchy) > self.grid.max_dept_levels:
            raise InvalidDepartmentPath(f"at most {self.grid.max_dept_levels} department levels: {hierarchy!r}")
        return hierarchy

    @_locked
    def add_task(
        self,
        title: str,
        goal: str = "",
        hierarchy: Sequence[str] = (),
        duration: Optional[int] = None,
        notes: str = "",
    ) -> Task:
        """Add an unscheduled task to the queue."""
        data = TaskInput(
            title=title,
            goal=goal,
            hierarchy=self._check_hierarchy(hierarchy),
            duration=duration or self.grid.default_duration,
            notes=notes,
        )
        task = QueueTask(id=self._mint("task"), **data.model_dump())
        self.doc.tasks.append(task)
        self._commit()
        return _queue_view(task)

    def _clean_patch(self, patch: Mapping[str, Any]) -> Dict[str, Any]:
        values = TaskPatch.model_validate(dict(patch)).model_dump(exclude_unset=True)
        values = {k: v for k, v in values.items() if v is not None or k in NULLABLE_FIELDS}
        if "hierarchy" in values:
            values["hierarchy"] = self._check_hierarchy(values["hierarchy"])
        return values

    def _apply_schedule(self, record, values: Dict[str, Any]) -> None:
        day = values.get("scheduled_day", record.scheduled_day)
        time_str = values.get("scheduled_time", record.scheduled_time)
        if day is None and time_str is None:
            record.scheduled_day = record.scheduled_time = None
            return
        if day is None or time_str is None:
            raise ValueError("scheduled_day and scheduled_time must be set together")
        checked = self._check_schedule(day, time_str)
        if checked is None:
            raise ValueError(f"{day} {time_str} is outside the planner grid")
        record.scheduled_day, record.scheduled_time = checked

    def _apply_patch(self, found: _Located, values: Dict[str, Any]) -> None:
        schedule = {k: v for k, v in values.items() if k in SCHEDULE_FIELDS}
        fields = {k: v for k, v in values.items() if k not in SCHEDULE_FIELDS}
        record = found.queue_task if found.kind == "queue" else found.instance

        if schedule:
            self._apply_schedule(record, schedule)
        for name, value in fields.items():
            if found.kind == "template" and name not in INSTANCE_FIELDS:
                # the recurring definition: every week sees this change
                setattr(found.template, name, value)
            else:
                setattr(record, name, value)

    @_locked
    def update_task(self, task_id: str, patch: Mapping[str, Any]) -> Optional[Task]:
        """Apply ``patch`` to the task; None when the id resolves to nothing.

        For a template occurrence, ``completed``, ``notes`` and the schedule
        change only that week, while ``title``, ``goal``, ``hierarchy`` and
        ``duration`` change the template and so every week. Invalid values
        raise ValueError before anything is written.
        """
        found = self._locate(task_id)
        if found is None:
            logger.debug("update: no task for id %s", task_id)
            return None
        self._apply_patch(found, self._clean_patch(patch))
        self._commit()
        return self.get_task(task_id)

    def toggle_complete(self, task_id: str) -> Optional[Task]:
        task = self.get_task(task_id)
        if task is None:
            return None
        return self.update_task(task_id, {"completed": not task.completed})

    @_locked
    def advance_task_progress(self, task_id: str) -> Optional[Tuple[Task, bool]]:
        """Tick the first open ``[ ]`` step in the notes, or toggle the task.

        Ticking the last open step also completes the task. Returns the
        updated task and whether a step was ticked.
        """
        task = self.get_task(task_id)
        if task is None:
            return None
        lines = (task.notes or "").split("\n")
        open_index = next((i for i, line in enumerate(lines) if "[ ]" in line), None)
        if open_index is None:
            return self.update_task(task_id, {"completed": not task.completed}), False

        lines[open_index] = lines[open_index].replace("[ ]", "[x]", 1)
        patch: Dict[str, Any] = {"notes": "\n".join(lines)}
        if not any("[ ]" in line for line in lines) and not task.completed:
            patch["completed"] = True
        return self.update_task(task_id, patch), True

    @_locked
    def delete_task(self, task_id: str) -> bool:
        """Remove one task. A template occurrence disappears from its week only."""
        found = self._locate(task_id)
        if found is None:
            logger.debug("delete: no task for id %s", task_id)
            return False
        if found.kind == "queue":
            self.doc.tasks.remove(found.queue_task)
        else:
            found.week.tasks.remove(found.instance)
        self._commit()
        return True

    @_locked
    def schedule_task(self, task_id: str, day: Union[Day, str], time_str: str) -> Optional[Task]:
        """Place a queue task on the current week, never creating a template.

        Dropping the same title again on the same slot updates the existing
        row instead of adding a duplicate. Returns the week row's view.
        """
        task = self._find_queue(task_id)
        checked = self._check_schedule(day, time_str)
        if task is None or checked is None:
            logger.debug("schedule: cannot place %s at %s %s", task_id, day, time_str)
            return None
        day, time_str = checked

        week_id = self.current_week_id
        week, _ = self._ensure_week(week_id)
        row = next(
            (
                r
                for r in week.tasks
                if isinstance(r, StandaloneInstance)
                and r.title == task.title
                and r.scheduled_day == day
                and r.scheduled_time == time_str
            ),
            None,
        )
        if row is None:
            row = StandaloneInstance(
                instance_id=self._mint("inst"),
                title=task.title,
                goal=task.goal,
                hierarchy=list(task.hierarchy),
                duration=task.duration,
                completed=False,
                notes=task.notes,
                scheduled_day=day,
                scheduled_time=time_str,
                source_task_id=task.id,
            )
            week.tasks.append(row)
        else:
            row.duration = task.duration
            row.hierarchy = list(task.hierarchy)
            row.goal = task.goal
            row.notes = task.notes
            row.source_task_id = row.source_task_id or task.id

        task.scheduled_day, task.scheduled_time = day, time_str
        self._commit()
        return _week_row_view(row, week_id, week.tasks.index(row))

    @_locked
    def reschedule_task_in_week(self, task_id: str, day: Union[Day, str], time_str: str) -> Optional[Task]:
        """Move a task to another slot of its week without changing its id."""
        found = self._locate(task_id)
        if found is None:
            logger.debug("reschedule: no task for id %s", task_id)
            return None
        if found.kind == "queue":
            return self.schedule_task(task_id, day, time_str)
        checked = self._check_schedule(day, time_str)
        if checked is None:
            return None
        found.instance.scheduled_day, found.instance.scheduled_time = checked
        self._commit()
        return self.get_task(task_id)

    @_locked
    def unschedule_task(self, task_id: str) -> Optional[Task]:
        """Send a task back to the queue.

        For a template occurrence this ends the recurrence: the template and
        its rows in every week go away and a queue task takes its place. A
        week row scheduled from a queue task returns to that same task.
        """
        found = self._locate(task_id)
        if found is None:
            logger.debug("unschedule: no task for id %s", task_id)
            return None

        if found.kind == "queue":
            found.queue_task.scheduled_day = found.queue_task.scheduled_time = None
            self._commit()
            return _queue_view(found.queue_task)

        if found.kind == "week":
            origin = self._find_queue(found.instance.source_task_id) if found.instance.source_task_id else None
            if origin is not None:
                # the row came from this queue task: hand it back instead of adding a copy
                row = found.instance
                origin.title, origin.goal, origin.duration = row.title, row.goal, row.duration
                origin.hierarchy, origin.notes = list(row.hierarchy), row.notes
                origin.scheduled_day = origin.scheduled_time = None
                found.week.tasks.remove(row)
                self._commit()
                return _queue_view(origin)

        source = found.template if found.kind == "template" else found.instance
        queued = QueueTask(
            id=self._mint("task"),
            title=source.title,
            goal=source.goal,
            hierarchy=list(source.hierarchy),
            duration=source.duration,
            notes=source.notes,
            completed=False,
        )
        self.doc.tasks.append(queued)

        if found.kind == "template":
            template_id = found.template.id
            self.doc.templates = [t for t in self.doc.templates if t.id != template_id]
            for week in self.doc.weekly_instances.values():
                week.tasks = [
                    r for r in week.tasks if not (isinstance(r, TemplateInstance) and r.template_id == template_id)
                ]
        else:
            found.week.tasks.remove(found.instance)

        self._commit()
        return _queue_view(queued)

    @_locked
    def copy_from_previous_week(self, week_id: str) -> bool:
        """Copy last week's tasks into ``week_id``; False when last week is empty."""
        prev_id = get_previous_week_id(week_id)
        if prev_id is None:
            return False
        prev_tasks = self.get_tasks_for_week(prev_id)
        if not prev_tasks:
            logger.info("no tasks in %s to copy", prev_id)
            return False

        week, _ = self._ensure_week(week_id)
        present = {(t.title, t.scheduled_day, t.scheduled_time) for t in self.get_tasks_for_week(week_id)}
        linked = {r.template_id for r in week.tasks if isinstance(r, TemplateInstance)}

        for task in prev_tasks:
            if (task.title, task.scheduled_day, task.scheduled_time) in present:
                continue
            if task.kind == "template":
                if task.template_id in linked:
                    continue
                linked.add(task.template_id)
                week.tasks.append(
                    TemplateInstance(
                        template_id=task.template_id,
                        notes=task.notes,
                        scheduled_day=task.scheduled_day,
                        scheduled_time=task.scheduled_time,
                    )
                )
            else:
                week.tasks.append(
                    StandaloneInstance(
                        instance_id=self._mint("inst"),
                        title=task.title,
                        goal=task.goal,
                        hierarchy=list(task.hierarchy),
                        duration=task.duration,
                        notes=task.notes,
                        scheduled_day=task.scheduled_day,
                        scheduled_time=task.scheduled_time,
                    )
                )
        self._commit()
        return True

    # ------------------------------------------------------------------
    # goals, departments
    # ------------------------------------------------------------------

    def get_goals(self) -> Dict[str, str]:
        return dict(self.doc.goals)

    @_locked
    def save_goal(self, day: Union[Day, str], goal: str) -> None:
        self.doc.goals[Day.parse(day).value] = goal
        self._commit()

    @_locked
    def migrate_department(self, old_path: Sequence[str], new_path: Optional[Sequence[str]]) -> int:
        """Rename/move (or, with ``new_path`` None, delete) a department everywhere."""
        changed = migrate_department(self.doc, old_path, new_path, self.grid.max_dept_levels)
        self._commit()
        return changed

    # ------------------------------------------------------------------
    # reports
    # ------------------------------------------------------------------

    def week_summary(self, week_id: Optional[str] = None) -> Dict[str, Any]:
        tasks = self.get_tasks_for_week(week_id or self.current_week_id)
        by_hierarchy: Dict[str, Dict[str, int]] = {}
        mini_total = mini_done = 0
        for task in tasks:
            top = task.hierarchy[0] if task.hierarchy else "Uncategorized"
            bucket = by_hierarchy.setdefault(top, {"total": 0, "completed": 0})
            bucket["total"] += task.duration
            if task.completed:
                bucket["completed"] += task.duration
            total, done = _checklist(task.notes)
            mini_total += total
            mini_done += done
        return {
            "by_hierarchy": by_hierarchy,
            "mini_tasks": {"total": mini_total, "completed": mini_done},
            "tasks": {"total": len(tasks), "completed": sum(1 for t in tasks if t.completed)},
            "duration": {
                "total": sum(t.duration for t in tasks),
                "completed": sum(t.duration for t in tasks if t.completed),
            },
        }

    def daily_stats(self, week_id: Optional[str] = None) -> List[Dict[str, Any]]:
        tasks = self.get_tasks_for_week(week_id or self.current_week_id)
        stats = []
        for day in Day:
            day_tasks = [t for t in tasks if t.scheduled_day == day]
            completed = sum(1 for t in day_tasks if t.completed)
            percent = round(completed / len(day_tasks) * 100) if day_tasks else 0
            stats.append({"day": day.label, "total": len(day_tasks), "completed": completed, "percent": percent})
        return stats

    # ------------------------------------------------------------------
    # export / import
    # ------------------------------------------------------------------

    def export_data(self) -> Dict[str, Any]:
        dumped = self.doc.to_json_dict()
        data = {k: dumped[k] for k in ("tasks", "templates", "weeklyInstances", "goals", "nextId", "migrated")}
        return {
            "version": EXPORT_VERSION,
            "exportedAt": datetime.now(timezone.utc).isoformat(),
            "data": data,
        }

    def _imported_document(self, envelope: Mapping[str, Any]) -> PlannerDocument:
        try:
            parsed = ExportEnvelope.model_validate(envelope)
        except ValidationError as exc:
            raise ImportFormatError(f"not a planner export: {exc}") from exc
        ctx = MigrationContext(self.current_week_id, self.grid.max_dept_levels)
        raw, _ = upgrade_document(parsed.data, ctx)
        try:
            return PlannerDocument.model_validate(raw)
        except ValidationError as exc:
            raise ImportFormatError(f"export data is invalid: {exc}") from exc

    @_locked
    def import_data(self, envelope: Mapping[str, Any], merge: bool = False) -> None:
        """Replace everything with an export, or add it to what is here.

        Merging gives every imported task, template and week row a new id.
        Raises ImportFormatError, leaving the planner untouched, when the
        envelope is malformed.
        """
        incoming = self._imported_document(envelope)
        if not merge:
            self.doc = incoming
            self._commit()
            return

        task_ids = {}
        for task in incoming.tasks:
            task_ids[task.id] = self._mint("task")
            self.doc.tasks.append(task.model_copy(update={"id": task_ids[task.id]}))

        template_ids = {t.id: self._mint("template") for t in incoming.templates}

        # weeks first: a week created here must not also pick up the imported templates
        for week_id, week in incoming.weekly_instances.items():
            target, _ = self._ensure_week(week_id)
            for record in week.tasks:
                if isinstance(record, TemplateInstance):
                    if record.template_id not in template_ids:
                        continue
                    target.tasks.append(record.model_copy(update={"template_id": template_ids[record.template_id]}))
                else:
                    update = {"instance_id": self._mint("inst"), "source_task_id": task_ids.get(record.source_task_id)}
                    target.tasks.append(record.model_copy(update=update))

        for template in incoming.templates:
            self.doc.templates.append(template.model_copy(update={"id": template_ids[template.id]}))

        self.doc.goals.update(incoming.goals)
        self._commit()
