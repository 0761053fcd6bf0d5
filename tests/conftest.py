from datetime import date

import pytest

from weekplanner.models import Day, Template
from weekplanner.planner import Planner
from weekplanner.storage import MemoryStorage

# Tuesday of 2026-W05 (Mon Feb 2 .. Sun Feb 8)
TODAY = date(2026, 2, 3)


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def planner(storage):
    return Planner.open(storage, today=TODAY)


@pytest.fixture
def gym(planner):
    """A recurring 'Gym' template on Tuesday 09:00 for 60 minutes."""
    template = Template(
        id="template_90",
        title="Gym",
        hierarchy=["PERSONAL", "Health"],
        duration=60,
        scheduled_day=Day.TUESDAY,
        scheduled_time="09:00",
    )
    planner.doc.templates.append(template)
    return template
