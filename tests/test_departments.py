import pytest

from weekplanner.departments import migrate_department, rewrite_hierarchy, validate_path
from weekplanner.models import InvalidDepartmentPath


def test_rewrite_keeps_the_tail():
    assert rewrite_hierarchy(["WORK", "Eng", "Backend"], ["WORK", "Eng"], ["WORK", "Platform"]) == [
        "WORK",
        "Platform",
        "Backend",
    ]


def test_rewrite_matches_whole_segments_only():
    assert rewrite_hierarchy(["WORK", "Engineering"], ["WORK", "Eng"], ["X"]) == ["WORK", "Engineering"]


def test_delete_clears_the_hierarchy():
    assert rewrite_hierarchy(["WORK", "Eng", "Backend"], ["WORK"], None) == []


@pytest.mark.parametrize("bad", [[], ["A", "B", "C", "D", "E"], ["A", ""], ["  "]])
def test_malformed_paths_are_rejected(bad):
    with pytest.raises(InvalidDepartmentPath):
        validate_path(bad)


def test_rename_reaches_queue_templates_and_week_rows(planner, gym):
    planner.add_task("Physio", hierarchy=["PERSONAL", "Health", "Knee"])
    queued = planner.add_task("Taxes", hierarchy=["PERSONAL", "Admin"])
    planner.schedule_task(queued.id, "wed", "10:00")
    planner.get_tasks_for_week(planner.current_week_id)

    changed = planner.migrate_department(["PERSONAL", "Health"], ["PERSONAL", "Fitness"])

    assert changed == 2
    assert gym.hierarchy == ["PERSONAL", "Fitness"]
    physio = next(t for t in planner.get_queue_tasks() if t.title == "Physio")
    assert physio.hierarchy == ("PERSONAL", "Fitness", "Knee")
    week_row = next(t for t in planner.get_tasks_for_week(planner.current_week_id) if t.title == "Taxes")
    assert week_row.hierarchy == ("PERSONAL", "Admin")


def test_too_deep_result_changes_nothing(planner):
    shallow = planner.add_task("a", hierarchy=["X"])
    deep = planner.add_task("b", hierarchy=["X", "1", "2", "3"])

    with pytest.raises(InvalidDepartmentPath):
        migrate_department(planner.doc, ["X"], ["Y", "Z"])

    assert planner.get_task(shallow.id).hierarchy == ("X",)
    assert planner.get_task(deep.id).hierarchy == ("X", "1", "2", "3")


def test_planner_delete_department(planner):
    task = planner.add_task("a", hierarchy=["WORK", "Eng"])
    assert planner.migrate_department(["WORK"], None) == 1
    assert planner.get_task(task.id).hierarchy == ()
