"""Runtime configuration: data file location and the daily scheduling grid."""
from __future__ import annotations

import os
from pathlib import Path

from pydantic import BaseModel, Field, model_validator

# store the planner document in the user's home directory by default
DATA_FILE = Path(os.environ.get("WEEKPLANNER_DATA", Path.home() / "weekplanner.json"))

STORAGE_KEY = "weeklyPlanner_v3"
EXPORT_VERSION = "3.1"


class GridConfig(BaseModel):
    """The fixed daily grid every scheduled task must fit into."""

    start_hour: int = Field(8, ge=0, le=23)
    end_hour: int = Field(19, ge=1, le=24)
    slot_duration: int = Field(30, gt=0, le=60)
    default_duration: int = 60
    min_duration: int = 15
    max_duration: int = 480
    max_dept_levels: int = 4

    model_config = {"extra": "forbid", "frozen": True}

    @model_validator(mode="after")
    def _check_window(self) -> "GridConfig":
        if self.end_hour <= self.start_hour:
            raise ValueError("end_hour must be after start_hour")
        if 60 % self.slot_duration:
            raise ValueError("slot_duration must divide an hour")
        return self

    @property
    def slots_per_hour(self) -> int:
        return 60 // self.slot_duration

    @property
    def day_start(self) -> int:
        return self.start_hour * 60

    @property
    def day_end(self) -> int:
        return self.end_hour * 60

    @property
    def cell_count(self) -> int:
        """Number of grid cells in one day column."""
        return (self.end_hour - self.start_hour) * self.slots_per_hour


def load_grid_config() -> GridConfig:
    overrides = {}
    for env, field in (
        ("WEEKPLANNER_START_HOUR", "start_hour"),
        ("WEEKPLANNER_END_HOUR", "end_hour"),
        ("WEEKPLANNER_SLOT_MINUTES", "slot_duration"),
    ):
        value = os.environ.get(env)
        if value:
            overrides[field] = value
    return GridConfig(**overrides)
