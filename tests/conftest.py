import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from leadflow.core.lead_fsm import LeadStatusEngine
from leadflow.core.models import Lead
from leadflow.core.repository import InMemoryLeadRepository, seed_default_statuses


class FakeClock:
    """Deterministic clock: every reading is one second after the previous."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        self.now = self.now + timedelta(seconds=1)
        return self.now


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 5, 6, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def repository():
    repo = InMemoryLeadRepository()
    asyncio.run(seed_default_statuses(repo))
    return repo


@pytest.fixture
def engine(repository, clock):
    return LeadStatusEngine(repository, clock=clock)


@pytest.fixture
def make_lead(engine):
    def _make(**overrides) -> Lead:
        fields = {"name": "Ahmet Yılmaz", "phone": "05321234567"}
        fields.update(overrides)
        return asyncio.run(engine.create_lead(Lead(**fields))).unwrap()

    return _make
