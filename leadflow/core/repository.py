"""
Lead Repository
===============
The persistence collaborator the engine talks to.
`transaction(lead_id)` is the unit of work: everything written inside it
lands together or not at all, and two scopes on the same lead never overlap.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter, defaultdict
from contextlib import asynccontextmanager
from dataclasses import replace
from typing import AsyncContextManager, AsyncIterator, Dict, Iterable, List, Optional, Protocol

from leadflow.core.lead_states import DEFAULT_STATUSES
from leadflow.core.models import ContactEvent, Lead, StatusDefinition

logger = logging.getLogger(__name__)


class LeadStore(Protocol):
    async def load_lead(self, lead_id: str) -> Optional[Lead]: ...

    async def find_lead_by_phone(self, phone: str) -> Optional[Lead]: ...

    async def save_lead(self, lead: Lead) -> None: ...

    async def append_event(self, event: ContactEvent) -> None: ...

    async def list_events(self, lead_id: str) -> List[ContactEvent]: ...

    async def list_status_definitions(self) -> List[StatusDefinition]: ...


class LeadRepository(LeadStore, Protocol):
    async def list_leads(self, status_code: Optional[str] = None, limit: int = 50) -> List[Lead]: ...

    async def seed_status_definitions(self, definitions: Iterable[StatusDefinition]) -> int: ...

    def transaction(self, lead_id: str) -> AsyncContextManager[LeadStore]: ...


def default_status_definitions() -> List[StatusDefinition]:
    return [
        StatusDefinition(code=code.value, label=label, order_index=order, color=color)
        for code, label, order, color in DEFAULT_STATUSES
    ]


async def seed_default_statuses(repository: LeadRepository) -> int:
    """Insert the default pipeline statuses that are missing. Returns how many were added."""
    added = await repository.seed_status_definitions(default_status_definitions())
    if added:
        logger.info("Seeded %d status definitions", added)
    return added


# ── In-memory implementation ──────────────────────────────────────────────────

class _StagedScope:
    """Reads through to the repository, buffers writes until commit."""

    def __init__(self, repository: "InMemoryLeadRepository"):
        self._repository = repository
        self._leads: Dict[str, Lead] = {}
        self._events: List[ContactEvent] = []

    async def load_lead(self, lead_id: str) -> Optional[Lead]:
        if lead_id in self._leads:
            return replace(self._leads[lead_id])
        return await self._repository.load_lead(lead_id)

    async def find_lead_by_phone(self, phone: str) -> Optional[Lead]:
        for lead in self._leads.values():
            if lead.phone == phone:
                return replace(lead)
        return await self._repository.find_lead_by_phone(phone)

    async def save_lead(self, lead: Lead) -> None:
        self._leads[lead.id] = replace(lead)

    async def append_event(self, event: ContactEvent) -> None:
        self._events.append(event)

    async def list_events(self, lead_id: str) -> List[ContactEvent]:
        stored = await self._repository.list_events(lead_id)
        return stored + [e for e in self._events if e.lead_id == lead_id]

    async def list_status_definitions(self) -> List[StatusDefinition]:
        return await self._repository.list_status_definitions()

    def commit(self) -> None:
        for lead in self._leads.values():
            self._repository._leads[lead.id] = lead
        for event in self._events:
            self._repository._events[event.lead_id].append(event)


class InMemoryLeadRepository:
    """Dict-backed repository for tests and single-process use."""

    def __init__(self, statuses: Optional[Iterable[StatusDefinition]] = None):
        self._leads: Dict[str, Lead] = {}
        self._events: Dict[str, List[ContactEvent]] = defaultdict(list)
        self._statuses: Dict[str, StatusDefinition] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Counter = Counter()
        for status in statuses or ():
            self._statuses[status.code] = status

    async def load_lead(self, lead_id: str) -> Optional[Lead]:
        lead = self._leads.get(lead_id)
        return replace(lead) if lead else None

    async def find_lead_by_phone(self, phone: str) -> Optional[Lead]:
        for lead in self._leads.values():
            if lead.phone == phone:
                return replace(lead)
        return None

    async def list_leads(self, status_code: Optional[str] = None, limit: int = 50) -> List[Lead]:
        leads = [
            replace(lead)
            for lead in self._leads.values()
            if status_code is None or lead.status_code == status_code
        ]
        leads.sort(key=lambda lead: lead.created_at, reverse=True)
        return leads[:limit]

    async def save_lead(self, lead: Lead) -> None:
        self._leads[lead.id] = replace(lead)

    async def append_event(self, event: ContactEvent) -> None:
        self._events[event.lead_id].append(event)

    async def list_events(self, lead_id: str) -> List[ContactEvent]:
        return list(self._events.get(lead_id, []))

    async def list_status_definitions(self) -> List[StatusDefinition]:
        active = [s for s in self._statuses.values() if s.is_active]
        return sorted(active, key=lambda s: s.order_index)

    async def seed_status_definitions(self, definitions: Iterable[StatusDefinition]) -> int:
        added = 0
        for definition in definitions:
            if definition.code not in self._statuses:
                self._statuses[definition.code] = definition
                added += 1
        return added

    async def set_status_active(self, code: str, is_active: bool) -> None:
        self._statuses[code] = replace(self._statuses[code], is_active=is_active)

    @property
    def open_locks(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def transaction(self, lead_id: str) -> AsyncIterator[_StagedScope]:
        lock = self._locks.setdefault(lead_id, asyncio.Lock())
        self._lock_users[lead_id] += 1
        try:
            async with lock:
                scope = _StagedScope(self)
                yield scope
                # Only reached when the block exited cleanly
                scope.commit()
        finally:
            # The lock goes away with its last holder or waiter
            self._lock_users[lead_id] -= 1
            if not self._lock_users[lead_id]:
                del self._lock_users[lead_id]
                del self._locks[lead_id]
