import json
from datetime import date, timedelta

import pytest

from weekplanner.config import STORAGE_KEY
from weekplanner.models import (
    Day,
    ImportFormatError,
    InvalidDepartmentPath,
    StandaloneInstance,
    WeekInstances,
)
from weekplanner.planner import Planner
from weekplanner.storage import MemoryStorage


W04, W05, W06, W07 = "2026-W04", "2026-W05", "2026-W06", "2026-W07"
GYM_W05 = "template_90_2026-W05"


def _titles(tasks):
    return [t.title for t in tasks]


class TestTemplatesAndWeeks:
    def test_completion_stays_in_its_week(self, planner, gym):
        planner.get_tasks_for_week(W05)
        planner.toggle_complete(GYM_W05)

        assert planner.get_task(GYM_W05).completed is True
        (next_week,) = planner.get_tasks_for_week(W06)
        assert next_week.title == "Gym"
        assert next_week.completed is False

    def test_unscheduling_an_occurrence_ends_the_recurrence(self, planner, gym):
        planner.get_tasks_for_week(W05)
        planner.get_tasks_for_week(W06)

        queued = planner.unschedule_task(GYM_W05)

        assert queued.kind == "queue"
        assert planner.template_count == 0
        for week_id in (W05, W06, W07):
            assert "Gym" not in _titles(planner.get_tasks_for_week(week_id))
        assert "Gym" in _titles(planner.get_queue_tasks())

    def test_template_fields_propagate_and_instance_fields_do_not(self, planner, gym):
        planner.get_tasks_for_week(W06)
        planner.get_tasks_for_week(W05)

        updated = planner.update_task(GYM_W05, {"title": "Gym class", "duration": 90, "notes": "bring towel"})

        assert updated.title == "Gym class"
        assert updated.notes == "bring towel"
        (other,) = planner.get_tasks_for_week(W06)
        assert other.title == "Gym class"
        assert other.duration == 90
        assert other.notes == ""

    def test_schedule_override_is_local_to_the_week(self, planner, gym):
        planner.get_tasks_for_week(W05)

        moved = planner.update_task(GYM_W05, {"scheduledDay": "thursday", "scheduledTime": "11:00"})

        assert (moved.scheduled_day, moved.scheduled_time) == (Day.THURSDAY, "11:00")
        assert gym.scheduled_day == Day.TUESDAY
        (other,) = planner.get_tasks_for_week(W06)
        assert (other.scheduled_day, other.scheduled_time) == (Day.TUESDAY, "09:00")

    def test_materialization_is_lazy_and_idempotent(self, planner, storage, gym):
        calls = []
        planner.subscribe(lambda: calls.append(1))

        assert planner.get_task("template_90_2026-W09") is None
        assert not planner.has_week_instances("2026-W09")

        planner.get_tasks_for_week("2026-W09")
        planner.get_tasks_for_week("2026-W09")

        assert len(planner.doc.weekly_instances["2026-W09"].tasks) == 1
        assert "2026-W09" in json.loads(storage.data[STORAGE_KEY])["weeklyInstances"]
        assert calls == []

    def test_existing_week_does_not_pick_up_new_templates(self, planner, gym):
        planner.get_tasks_for_week(W05)
        planner.doc.templates.append(gym.model_copy(update={"id": "template_91", "title": "Swim"}))

        assert _titles(planner.get_tasks_for_week(W05)) == ["Gym"]
        assert sorted(_titles(planner.get_tasks_for_week(W06))) == ["Gym", "Swim"]

    def test_rows_of_a_missing_template_are_skipped(self, planner, gym):
        planner.get_tasks_for_week(W05)
        planner.doc.templates.clear()
        assert planner.get_tasks_for_week(W05) == []
        assert planner.get_task(GYM_W05) is None

    def test_promote_week(self, planner, gym):
        planner.get_tasks_for_week(W04)
        planner.get_tasks_for_week(W05)
        planner.toggle_complete(GYM_W05)
        write = planner.add_task("Write", duration=90)
        planner.schedule_task(write.id, "wed", "10:00")

        assert planner.set_template_from_current_week() == 2

        assert not planner.has_week_instances(W04)
        assert planner.get_task(GYM_W05).completed is True
        assert {t.id for t in planner.doc.templates} >= {"template_90"}
        next_week = planner.get_tasks_for_week(W06)
        assert sorted(_titles(next_week)) == ["Gym", "Write"]
        assert all(t.kind == "template" and not t.completed for t in next_week)

    def test_reset_week(self, planner, gym):
        planner.get_tasks_for_week(W05)
        planner.toggle_complete(GYM_W05)
        write = planner.add_task("Write")
        planner.schedule_task(write.id, "wed", "10:00")

        planner.reset_week_to_template()

        (only,) = planner.get_tasks_for_week(W05)
        assert only.id == GYM_W05
        assert only.completed is False

    def test_week_navigation(self, planner):
        assert planner.current_week_id == W05
        planner.set_current_week(date(2026, 2, 8) + timedelta(days=1))
        assert planner.current_week_id == W06


class TestScheduling:
    def test_schedule_creates_a_week_row_only(self, planner, gym):
        task = planner.add_task("Write", hierarchy=["WORK"], duration=90)

        row = planner.schedule_task(task.id, "wed", "10:00")

        assert row.id == "week_2026-W05_inst_2"
        assert row.kind == "week"
        assert planner.template_count == 1
        assert task.id not in [t.id for t in planner.get_queue_tasks()]
        assert [t.id for t in planner.get_scheduled_tasks()] == [task.id]
        assert _titles(planner.get_tasks_for_day("wednesday")) == ["Write"]
        assert planner.get_tasks_for_week(W06)[0].title == "Gym"
        assert len(planner.get_tasks_for_week(W06)) == 1

    def test_scheduling_the_same_slot_twice_does_not_duplicate(self, planner):
        task = planner.add_task("Write")
        first = planner.schedule_task(task.id, "wed", "10:00")
        second = planner.schedule_task(task.id, "wed", "10:00")

        assert first.id == second.id
        assert len(planner.get_tasks_for_day("wed")) == 1

    def test_schedule_rejects_bad_input(self, planner, gym):
        task = planner.add_task("Write")
        planner.get_tasks_for_week(W05)

        assert planner.schedule_task(task.id, "wed", "07:00") is None
        assert planner.schedule_task(task.id, "someday", "10:00") is None
        assert planner.schedule_task(GYM_W05, "wed", "10:00") is None
        assert planner.schedule_task("task_404", "wed", "10:00") is None

    def test_reschedule_keeps_the_id(self, planner, gym):
        task = planner.add_task("Write")
        row = planner.schedule_task(task.id, "wed", "10:00")

        moved = planner.reschedule_task_in_week(row.id, "fri", "13:00")
        assert moved.id == row.id
        assert moved.scheduled_day == Day.FRIDAY

        gym_moved = planner.reschedule_task_in_week(GYM_W05, "mon", "08:00")
        assert gym_moved.id == GYM_W05
        assert planner.get_tasks_for_week(W06)[0].scheduled_day == Day.TUESDAY

    def test_reschedule_of_a_queue_task_schedules_it(self, planner):
        task = planner.add_task("Write")
        row = planner.reschedule_task_in_week(task.id, "mon", "08:00")
        assert row.kind == "week"

    def test_unschedule_a_week_row(self, planner):
        task = planner.add_task("Write", notes="draft")
        row = planner.schedule_task(task.id, "wed", "10:00")

        queued = planner.unschedule_task(row.id)

        assert planner.get_task(row.id) is None
        assert queued.title == "Write"
        assert queued.notes == "draft"
        assert queued.id in [t.id for t in planner.get_queue_tasks()]

    def test_unscheduled_row_returns_to_its_queue_task(self, planner):
        task = planner.add_task("Write", notes="draft")
        row = planner.schedule_task(task.id, "wed", "10:00")
        planner.update_task(row.id, {"notes": "draft v2"})

        queued = planner.unschedule_task(row.id)

        assert queued.id == task.id
        assert queued.notes == "draft v2"
        assert queued.scheduled_day is None
        assert planner.get_scheduled_tasks() == []
        assert [t.id for t in planner.get_queue_tasks()] == [task.id]
        assert _titles(planner.get_all_tasks()) == ["Write"]

    def test_unscheduled_row_without_a_queue_task_gets_a_new_one(self, planner):
        task = planner.add_task("Write")
        row = planner.schedule_task(task.id, "wed", "10:00")
        planner.delete_task(task.id)

        queued = planner.unschedule_task(row.id)

        assert queued.id != task.id
        assert [t.title for t in planner.get_queue_tasks()] == ["Write"]

    def test_unschedule_a_queue_task_clears_its_slot(self, planner):
        task = planner.add_task("Write")
        planner.update_task(task.id, {"scheduled_day": "monday", "scheduled_time": "08:00"})
        assert planner.get_queue_tasks() == []

        planner.unschedule_task(task.id)
        assert [t.id for t in planner.get_queue_tasks()] == [task.id]

    def test_delete_an_occurrence_is_local(self, planner, gym):
        planner.get_tasks_for_week(W05)

        assert planner.delete_task(GYM_W05) is True

        assert planner.get_tasks_for_week(W05) == []
        assert planner.template_count == 1
        assert _titles(planner.get_tasks_for_week(W06)) == ["Gym"]
        assert planner.delete_task(GYM_W05) is False
        assert planner.delete_task("nothing") is False

    def test_slot_checks_on_the_live_week(self, planner, gym):
        assert not planner.is_slot_available("tue", "09:30", 30)
        assert planner.is_slot_available("tue", "09:30", 30, exclude_id=GYM_W05)
        assert planner.find_nearest_available_start("tue", "09:00", 60) == "08:00"

    def test_all_tasks_lists_a_scheduled_queue_task_once(self, planner, gym):
        task = planner.add_task("Write")
        planner.schedule_task(task.id, "wed", "10:00")

        assert sorted(_titles(planner.get_all_tasks())) == ["Gym", "Write"]


class TestPositionalIds:
    @pytest.fixture
    def old_week(self, planner):
        planner.doc.weekly_instances[W05] = WeekInstances(
            tasks=[
                StandaloneInstance(title="Old", duration=30, scheduled_day=Day.MONDAY, scheduled_time="08:00"),
                StandaloneInstance(
                    instance_id="inst_7", title="New", duration=30, scheduled_day=Day.MONDAY, scheduled_time="09:00"
                ),
            ]
        )
        return planner

    def test_rows_without_instance_id_are_addressed_by_position(self, old_week):
        ids = [t.id for t in old_week.get_tasks_for_week(W05)]
        assert ids == ["week_2026-W05_idx_0", "week_2026-W05_inst_7"]

        assert old_week.get_task("week_2026-W05_task_0").title == "Old"
        assert old_week.update_task("week_2026-W05_idx_0", {"completed": True}).completed is True

    def test_position_never_reaches_a_row_with_an_instance_id(self, old_week):
        assert old_week.get_task("week_2026-W05_idx_1") is None
        assert old_week.get_task("week_2026-W05_idx_9") is None


class TestUpdates:
    def test_update_of_unknown_id(self, planner):
        assert planner.update_task("task_404", {"title": "x"}) is None

    @pytest.mark.parametrize(
        "patch",
        [
            {"scheduled_day": "monday"},
            {"scheduled_day": "monday", "scheduled_time": "07:00"},
            {"duration": 0},
            {"title": ""},
            {"colour": "red"},
        ],
    )
    def test_invalid_patch_raises_and_changes_nothing(self, planner, patch):
        task = planner.add_task("Write", duration=45)

        with pytest.raises(ValueError):
            planner.update_task(task.id, patch)

        assert planner.get_task(task.id) == task

    def test_hierarchy_depth_is_enforced(self, planner, gym):
        with pytest.raises(InvalidDepartmentPath):
            planner.add_task("Deep", hierarchy=["A", "B", "C", "D", "E"])
        planner.get_tasks_for_week(W05)
        with pytest.raises(InvalidDepartmentPath):
            planner.update_task(GYM_W05, {"hierarchy": ["A", "B", "C", "D", "E"]})

    def test_advance_ticks_steps_then_completes(self, planner):
        task = planner.add_task("Report", notes="- [ ] outline\n- [ ] draft")

        first, ticked = planner.advance_task_progress(task.id)
        assert ticked is True
        assert first.notes == "- [x] outline\n- [ ] draft"
        assert first.completed is False

        second, _ = planner.advance_task_progress(task.id)
        assert second.completed is True

        third, ticked = planner.advance_task_progress(task.id)
        assert ticked is False
        assert third.completed is False

    def test_advance_of_unknown_id(self, planner):
        assert planner.advance_task_progress("nope") is None

    def test_copy_from_previous_week(self, planner):
        task = planner.add_task("Prep")
        planner.set_current_week(date(2026, 1, 27))
        planner.schedule_task(task.id, "mon", "08:00")
        planner.set_current_week(date(2026, 2, 3))

        assert planner.copy_from_previous_week(W05) is True
        assert planner.copy_from_previous_week(W05) is True
        assert _titles(planner.get_tasks_for_week(W05)) == ["Prep"]
        assert planner.copy_from_previous_week(W04) is False

    def test_goals(self, planner):
        planner.save_goal("mon", "Ship it")
        assert planner.get_goals() == {"monday": "Ship it"}


class TestReportsAndNotifications:
    def test_week_summary_and_daily_stats(self, planner, gym):
        planner.get_tasks_for_week(W05)
        planner.toggle_complete(GYM_W05)
        task = planner.add_task("Write", duration=90, notes="- [x] a\n- [ ] b")
        planner.schedule_task(task.id, "wed", "10:00")

        summary = planner.week_summary()

        assert summary["by_hierarchy"] == {
            "PERSONAL": {"total": 60, "completed": 60},
            "Uncategorized": {"total": 90, "completed": 0},
        }
        assert summary["mini_tasks"] == {"total": 2, "completed": 1}
        assert summary["tasks"] == {"total": 2, "completed": 1}
        assert summary["duration"] == {"total": 150, "completed": 60}

        stats = {s["day"]: s for s in planner.daily_stats()}
        assert stats["Tue"]["percent"] == 100
        assert stats["Wed"] == {"day": "Wed", "total": 1, "completed": 0, "percent": 0}
        assert stats["Sun"]["total"] == 0

    def test_subscribers_are_told_after_each_mutation(self, planner):
        calls = []
        unsubscribe = planner.subscribe(lambda: calls.append("a"))

        def broken():
            raise RuntimeError("listener bug")

        planner.subscribe(broken)
        planner.subscribe(lambda: calls.append("b"))

        planner.add_task("One")
        assert calls == ["a", "b"]

        unsubscribe()
        planner.add_task("Two")
        assert calls == ["a", "b", "b"]

    def test_mutations_are_written_to_storage(self, planner, storage):
        task = planner.add_task("Saved")
        stored = json.loads(storage.data[STORAGE_KEY])
        assert [t["id"] for t in stored["tasks"]] == [task.id]
        assert stored["nextId"] == 2


class TestExportImport:
    @pytest.fixture
    def exported(self):
        other = Planner.open(MemoryStorage(), today=date(2026, 2, 3))
        task = other.add_task("From B", hierarchy=["WORK"])
        other.schedule_task(task.id, "mon", "08:00")
        other.save_goal("fri", "Demo")
        return json.loads(json.dumps(other.export_data()))

    def test_export_envelope(self, exported):
        assert exported["version"] == "3.1"
        assert "exportedAt" in exported
        assert set(exported["data"]) == {"tasks", "templates", "weeklyInstances", "goals", "nextId", "migrated"}

    def test_import_replaces_everything(self, planner, gym, exported):
        planner.import_data(exported)

        assert planner.template_count == 0
        assert _titles(planner.get_tasks_for_week(W05)) == ["From B"]
        assert planner.get_goals() == {"friday": "Demo"}

    def test_merge_import_mints_new_ids(self, planner, gym, exported):
        mine = planner.add_task("Mine")

        planner.import_data(exported, merge=True)

        week = planner.get_tasks_for_week(W05)
        assert sorted(_titles(week)) == ["From B", "Gym"]
        assert len({t.id for t in week}) == 2
        queue_ids = [t.id for t in planner.doc.tasks]
        assert queue_ids[0] == mine.id
        assert len(set(queue_ids)) == 2
        assert sorted(_titles(planner.get_all_tasks())) == ["From B", "Gym", "Mine"]

    @pytest.mark.parametrize(
        "envelope",
        [
            {"foo": 1},
            {"version": "3.1", "exportedAt": "now"},
            {"version": "3.1", "exportedAt": "now", "data": {"tasks": [{"id": 1}]}},
        ],
    )
    def test_malformed_import_leaves_planner_untouched(self, planner, envelope):
        task = planner.add_task("Keep")

        with pytest.raises(ImportFormatError):
            planner.import_data(envelope)

        assert planner.get_task(task.id) == task
