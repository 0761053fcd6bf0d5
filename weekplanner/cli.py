#!/usr/bin/env python3
"""weekplanner CLI - recurring weekly planner on the command line"""
from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import List, Optional

import parsedatetime as pdt
import typer
from dateutil import parser as dateutil_parser
from rich import print
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .config import DATA_FILE, load_grid_config
from .models import Day, PlannerError, Task
from .planner import Planner
from .storage import JsonFileStorage
from .weeks import week_days

app = typer.Typer(help="Recurring weekly planner.", no_args_is_help=True)
dept_app = typer.Typer(help="Rename or delete departments across every task.")
app.add_typer(dept_app, name="dept")


def parse_datetime(date_str: str) -> Optional[datetime]:
    """Parse a natural language date string into a datetime object.

    Supports formats like "next monday", "in 3 days", "2026-02-03".
    Returns None if parsing fails.
    """
    if not date_str or not date_str.strip():
        return None

    try:
        return datetime.fromisoformat(date_str.strip())
    except ValueError:
        pass

    # then parsedatetime (handles relative dates well)
    cal = pdt.Calendar()
    dt, parse_status = cal.parseDT(date_str, sourceTime=datetime.now())
    # parse_status: 0=no match, 1=date match, 2=time match, 3=both
    if parse_status > 0:
        return dt

    # fall back to dateutil parser (handles ISO & other formats)
    try:
        return dateutil_parser.parse(date_str, fuzzy=False)
    except (ValueError, OverflowError):
        return None


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(show_path=False)],
        force=True,
    )


def _planner(ctx: typer.Context) -> Planner:
    return ctx.obj


def _fail(message: str) -> None:
    print(f"[bold red]{message}[/bold red]")
    raise typer.Exit(code=1)


def _parse_day(value: str) -> Day:
    try:
        return Day.parse(value)
    except ValueError:
        _fail(f"Unknown day: '{value}' (try mon, tuesday, ...)")


def _parse_path(value: str) -> List[str]:
    return [p.strip() for p in value.split("/") if p.strip()]


def _task_line(t: Task) -> str:
    done = " [dim](done)[/dim]" if t.completed else ""
    dept = f"[cyan]{' / '.join(t.hierarchy)}[/cyan] " if t.hierarchy else ""
    return f"{t.id}: {dept}{t.title} ({t.duration}m){done}"


@app.callback()
def main(
    ctx: typer.Context,
    data: Path = typer.Option(DATA_FILE, "--data", help="Planner data file"),
    when: Optional[str] = typer.Option(None, "--date", help="Any day of the week to work on (e.g. 'next monday')"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
):
    _setup_logging(verbose)
    today = None
    if when:
        parsed = parse_datetime(when)
        if not parsed:
            _fail(f"Could not parse date: '{when}'")
        today = parsed.date()
    ctx.obj = Planner.open(JsonFileStorage(data), grid=load_grid_config(), today=today)


@app.command()
def week(ctx: typer.Context):
    """Show the week as one column per day, plus the queue."""
    planner = _planner(ctx)
    week_id = planner.current_week_id
    tasks = planner.get_tasks_for_week(week_id)
    goals = planner.get_goals()

    table = Table.grid(expand=True)
    panels = []
    for weekday, d in zip(Day, week_days(week_id)):
        col = Text()
        day_tasks = sorted((t for t in tasks if t.scheduled_day == weekday), key=lambda t: t.scheduled_time or "")
        if goals.get(weekday.value):
            col.append(f"goal: {goals[weekday.value]}\n", style="italic")
        for t in day_tasks:
            style = "dim" if t.completed else ""
            col.append(f"{t.scheduled_time} {t.title}\n", style=style)
            col.append(f"  {t.id}\n", style="dim")
        if not day_tasks:
            col.append("-\n", style="dim")
        table.add_column(ratio=1)
        panels.append(Panel(col, title=f"{weekday.label} {d.strftime('%b %d')}", border_style="cyan"))
    table.add_row(*panels)
    print(Panel(table, title=f"Week {week_id}", border_style="green"))

    queue = planner.get_queue_tasks()
    if queue:
        print("[bold cyan]Queue[/bold cyan]")
        for t in queue:
            print(f"  {_task_line(t)}")


@app.command()
def day(ctx: typer.Context, name: str = typer.Argument(..., help="Day of the week")):
    """List one day of the current week in time order."""
    planner = _planner(ctx)
    tasks = sorted(planner.get_tasks_for_day(_parse_day(name)), key=lambda t: t.scheduled_time or "")
    if not tasks:
        print("[dim]Nothing scheduled.[/dim]")
        raise typer.Exit()
    for t in tasks:
        print(f"  {t.scheduled_time:6} {_task_line(t)}")


@app.command()
def queue(ctx: typer.Context):
    """List unscheduled tasks."""
    tasks = _planner(ctx).get_queue_tasks()
    if not tasks:
        print("[dim]Queue is empty.[/dim]")
        raise typer.Exit()
    for t in tasks:
        print(f"  {_task_line(t)}")


@app.command()
def add(
    ctx: typer.Context,
    title: str = typer.Argument(..., help="Task title"),
    duration: Optional[int] = typer.Option(None, "--duration", "-d", help="Minutes"),
    dept: Optional[str] = typer.Option(None, "--dept", "-c", help="Department path, e.g. 'WORK/Meetings'"),
    goal: str = typer.Option("", "--goal", help="What done looks like"),
    notes: str = typer.Option("", "--notes", help="Notes; '[ ] step' lines become a checklist"),
):
    """Add a task to the queue.

    Examples:
      weekplanner add "Write report" -d 90 -c "WORK/Admin"
    """
    try:
        task = _planner(ctx).add_task(
            title, goal=goal, hierarchy=_parse_path(dept or ""), duration=duration, notes=notes
        )
    except (PlannerError, ValueError) as exc:
        _fail(str(exc))
    print(f"[green]Added {task.id}:[/green] {task.title}")


def _place(planner: Planner, task_id: str, day: Day, time: str, nearest: bool) -> str:
    task = planner.get_task(task_id)
    if task is None:
        _fail(f"No task with id {task_id}")
    if planner.is_slot_available(day, time, task.duration, exclude_id=task_id, week_id=task.week_id):
        return time
    if not nearest:
        _fail(f"{day.label} {time} conflicts with another task (use --nearest)")
    found = planner.find_nearest_available_start(day, time, task.duration, exclude_id=task_id, week_id=task.week_id)
    if found is None:
        _fail(f"No free slot left on {day.label} for {task.duration} minutes")
    return found


@app.command()
def schedule(
    ctx: typer.Context,
    task_id: str = typer.Argument(..., help="Queue task id"),
    day_name: str = typer.Argument(..., metavar="DAY"),
    time: str = typer.Argument(..., help="HH:MM"),
    nearest: bool = typer.Option(False, "--nearest", help="Snap to the closest free slot on conflict"),
):
    """Put a queue task on this week's calendar (this week only)."""
    planner = _planner(ctx)
    day_ = _parse_day(day_name)
    slot = _place(planner, task_id, day_, time, nearest)
    task = planner.schedule_task(task_id, day_, slot)
    if task is None:
        _fail(f"Could not schedule {task_id} at {day_.label} {slot}")
    print(f"[green]Scheduled[/green] {task.title} → {day_.label} {slot} ({task.id})")


@app.command()
def move(
    ctx: typer.Context,
    task_id: str = typer.Argument(...),
    day_name: str = typer.Argument(..., metavar="DAY"),
    time: str = typer.Argument(..., help="HH:MM"),
    nearest: bool = typer.Option(False, "--nearest", help="Snap to the closest free slot on conflict"),
):
    """Move a task to another slot within its week."""
    planner = _planner(ctx)
    day_ = _parse_day(day_name)
    slot = _place(planner, task_id, day_, time, nearest)
    task = planner.reschedule_task_in_week(task_id, day_, slot)
    if task is None:
        _fail(f"Could not move {task_id}")
    print(f"[green]Moved[/green] {task.title} → {day_.label} {slot}")


@app.command()
def unschedule(ctx: typer.Context, task_id: str = typer.Argument(...)):
    """Send a task back to the queue. For a recurring task this ends the recurrence."""
    task = _planner(ctx).unschedule_task(task_id)
    if task is None:
        _fail(f"No task with id {task_id}")
    print(f"[yellow]Queued[/yellow] {task.title} as {task.id}")


@app.command()
def done(ctx: typer.Context, task_id: str = typer.Argument(...)):
    """Toggle completion (this week only for recurring tasks)."""
    task = _planner(ctx).toggle_complete(task_id)
    if task is None:
        _fail(f"No task with id {task_id}")
    print(f"{task.title}: {'[green]done[/green]' if task.completed else 'open'}")


@app.command()
def step(ctx: typer.Context, task_id: str = typer.Argument(...)):
    """Tick the next '[ ]' step in a task's notes."""
    result = _planner(ctx).advance_task_progress(task_id)
    if result is None:
        _fail(f"No task with id {task_id}")
    task, advanced = result
    what = "step ticked" if advanced else "toggled"
    print(f"{task.title}: {what}{' [green](done)[/green]' if task.completed else ''}")


@app.command()
def edit(
    ctx: typer.Context,
    task_id: str = typer.Argument(...),
    title: Optional[str] = typer.Option(None, "--title"),
    duration: Optional[int] = typer.Option(None, "--duration", "-d"),
    dept: Optional[str] = typer.Option(None, "--dept", "-c"),
    goal: Optional[str] = typer.Option(None, "--goal"),
    notes: Optional[str] = typer.Option(None, "--notes"),
):
    """Edit a task. Title, duration and department of a recurring task change every week."""
    patch = {"title": title, "duration": duration, "goal": goal, "notes": notes}
    patch = {k: v for k, v in patch.items() if v is not None}
    if dept is not None:
        patch["hierarchy"] = _parse_path(dept)
    if not patch:
        _fail("Nothing to change")
    try:
        task = _planner(ctx).update_task(task_id, patch)
    except (PlannerError, ValueError) as exc:
        _fail(str(exc))
    if task is None:
        _fail(f"No task with id {task_id}")
    print(f"[green]Updated[/green] {_task_line(task)}")


@app.command()
def delete(
    ctx: typer.Context,
    task_id: str = typer.Argument(...),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
):
    """Delete a task. A recurring task is removed from this week only."""
    planner = _planner(ctx)
    task = planner.get_task(task_id)
    if task is None:
        _fail(f"No task with id {task_id}")
    if not yes and not typer.confirm(f"Delete '{task.title}'?"):
        raise typer.Exit()
    planner.delete_task(task_id)
    print(f"[red]Deleted[/red] {task.title}")


@app.command()
def promote(ctx: typer.Context):
    """Make this week the template for every other week."""
    count = _planner(ctx).set_template_from_current_week()
    print(f"[green]Template set from this week:[/green] {count} recurring tasks")


@app.command()
def reset(
    ctx: typer.Context,
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
):
    """Rebuild this week from the template, dropping its changes."""
    if not yes and not typer.confirm("Discard this week's changes?"):
        raise typer.Exit()
    planner = _planner(ctx)
    planner.reset_week_to_template()
    print(f"[green]Week {planner.current_week_id} reset to template[/green]")


@app.command("copy-previous")
def copy_previous(ctx: typer.Context):
    """Copy last week's tasks into this week."""
    planner = _planner(ctx)
    if not planner.copy_from_previous_week(planner.current_week_id):
        print("[dim]Previous week has no tasks.[/dim]")
        raise typer.Exit()
    print(f"[green]Copied previous week into {planner.current_week_id}[/green]")


@app.command()
def goal(ctx: typer.Context, day_name: str = typer.Argument(..., metavar="DAY"), text: str = typer.Argument(...)):
    """Set the goal line for a day."""
    day_ = _parse_day(day_name)
    _planner(ctx).save_goal(day_, text)
    print(f"[green]Goal for {day_.label}:[/green] {text}")


@app.command()
def summary(ctx: typer.Context):
    """Time per department and completion for this week."""
    planner = _planner(ctx)
    report = planner.week_summary()
    table = Table(title=f"Week {planner.current_week_id}")
    table.add_column("Department")
    table.add_column("Planned", justify="right")
    table.add_column("Done", justify="right")
    for name, bucket in sorted(report["by_hierarchy"].items()):
        table.add_row(name, f"{bucket['total']}m", f"{bucket['completed']}m")
    print(table)
    tasks = report["tasks"]
    steps = report["mini_tasks"]
    print(f"Tasks {tasks['completed']}/{tasks['total']}  Steps {steps['completed']}/{steps['total']}")


@dept_app.command("rename")
def dept_rename(
    ctx: typer.Context,
    old: str = typer.Argument(..., help="Current path, e.g. 'WORK/Projects'"),
    new: str = typer.Argument(..., help="New path"),
):
    """Rename or move a department; sub-departments follow."""
    try:
        changed = _planner(ctx).migrate_department(_parse_path(old), _parse_path(new))
    except PlannerError as exc:
        _fail(str(exc))
    print(f"[green]{changed} tasks moved to {new}[/green]")


@dept_app.command("delete")
def dept_delete(ctx: typer.Context, old: str = typer.Argument(...)):
    """Delete a department; its tasks lose their department."""
    try:
        changed = _planner(ctx).migrate_department(_parse_path(old), None)
    except PlannerError as exc:
        _fail(str(exc))
    print(f"[yellow]{changed} tasks uncategorized[/yellow]")


@app.command("export")
def export_cmd(ctx: typer.Context, path: Path = typer.Argument(..., help="Backup file to write")):
    """Write a JSON backup."""
    path.write_text(json.dumps(_planner(ctx).export_data(), indent=2), encoding="utf-8")
    print(f"[green]Exported to {path}[/green]")


@app.command("import")
def import_cmd(
    ctx: typer.Context,
    path: Path = typer.Argument(..., exists=True, dir_okay=False),
    merge: bool = typer.Option(False, "--merge", help="Add to existing data instead of replacing it"),
):
    """Load a JSON backup."""
    try:
        envelope = json.loads(path.read_text(encoding="utf-8"))
        _planner(ctx).import_data(envelope, merge=merge)
    except json.JSONDecodeError as exc:
        _fail(f"Not a JSON file: {exc}")
    except PlannerError as exc:
        _fail(str(exc))
    print(f"[green]{'Merged' if merge else 'Imported'} {path}[/green]")


if __name__ == "__main__":
    app()
