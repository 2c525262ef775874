"""
SQL Lead Repository
===================
LeadRepository backed by async SQLAlchemy.
A transaction locks the lead row (SELECT ... FOR UPDATE) and commits once,
so concurrent operations on the same lead queue up instead of reading a
stale call_count.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from leadflow.core.lead_states import CallDisposition, ContactEventType, LeadSource
from leadflow.core.models import ContactEvent, Lead, StatusDefinition
from leadflow.db.models import ContactEventRow, LeadRow, StatusDefinitionRow

logger = logging.getLogger(__name__)


# ── Row mapping ───────────────────────────────────────────────────────────────

def _to_lead(row: LeadRow) -> Lead:
    return Lead(
        id=row.id,
        name=row.name,
        phone=row.phone,
        region=row.region,
        city=row.city,
        source=LeadSource(row.source),
        notes=row.notes,
        status_code=row.status_code,
        call_count=row.call_count or 0,
        last_contact_at=row.last_contact_at,
        next_action=row.next_action,
        next_action_at=row.next_action_at,
        appointment_date=row.appointment_date,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _to_lead_row(lead: Lead) -> LeadRow:
    return LeadRow(
        id=lead.id,
        name=lead.name,
        phone=lead.phone,
        region=lead.region,
        city=lead.city,
        source=lead.source.value,
        notes=lead.notes,
        status_code=lead.status_code,
        call_count=lead.call_count,
        last_contact_at=lead.last_contact_at,
        next_action=lead.next_action,
        next_action_at=lead.next_action_at,
        appointment_date=lead.appointment_date,
        created_at=lead.created_at,
        updated_at=lead.updated_at,
    )


def _to_event(row: ContactEventRow) -> ContactEvent:
    return ContactEvent(
        id=row.id,
        lead_id=row.lead_id,
        sequence=row.sequence,
        type=ContactEventType(row.type),
        disposition=CallDisposition(row.disposition) if row.disposition else None,
        note=row.note,
        from_status=row.from_status,
        to_status=row.to_status,
        payload=row.payload or {},
        created_at=row.created_at,
    )


def _to_event_row(event: ContactEvent) -> ContactEventRow:
    return ContactEventRow(
        id=event.id,
        lead_id=event.lead_id,
        sequence=event.sequence,
        type=event.type.value,
        disposition=event.disposition.value if event.disposition else None,
        note=event.note,
        from_status=event.from_status,
        to_status=event.to_status,
        payload=event.payload,
        created_at=event.created_at,
    )


def _to_status(row: StatusDefinitionRow) -> StatusDefinition:
    return StatusDefinition(
        code=row.code,
        label=row.label,
        order_index=row.order_index,
        color=row.color,
        is_active=row.is_active,
    )


# ── Session scope ─────────────────────────────────────────────────────────────

class SessionScope:
    """All reads and writes of one transaction, on one session."""

    def __init__(self, session: AsyncSession, locked_lead_id: Optional[str] = None):
        self.session = session
        self.locked_lead_id = locked_lead_id

    async def load_lead(self, lead_id: str) -> Optional[Lead]:
        query = select(LeadRow).where(LeadRow.id == lead_id)
        if lead_id == self.locked_lead_id:
            query = query.with_for_update()
        result = await self.session.execute(query)
        row = result.scalar_one_or_none()
        return _to_lead(row) if row else None

    async def find_lead_by_phone(self, phone: str) -> Optional[Lead]:
        result = await self.session.execute(select(LeadRow).where(LeadRow.phone == phone).limit(1))
        row = result.scalar_one_or_none()
        return _to_lead(row) if row else None

    async def save_lead(self, lead: Lead) -> None:
        await self.session.merge(_to_lead_row(lead))

    async def append_event(self, event: ContactEvent) -> None:
        self.session.add(_to_event_row(event))

    async def list_events(self, lead_id: str) -> List[ContactEvent]:
        result = await self.session.execute(
            select(ContactEventRow)
            .where(ContactEventRow.lead_id == lead_id)
            .order_by(ContactEventRow.sequence)
        )
        return [_to_event(row) for row in result.scalars().all()]

    async def list_status_definitions(self) -> List[StatusDefinition]:
        result = await self.session.execute(
            select(StatusDefinitionRow)
            .where(StatusDefinitionRow.is_active.is_(True))
            .order_by(StatusDefinitionRow.order_index)
        )
        return [_to_status(row) for row in result.scalars().all()]


class SqlAlchemyLeadRepository:
    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    @asynccontextmanager
    async def transaction(self, lead_id: Optional[str] = None) -> AsyncIterator[SessionScope]:
        async with self.session_factory() as session:
            async with session.begin():
                yield SessionScope(session, locked_lead_id=lead_id)

    async def load_lead(self, lead_id: str) -> Optional[Lead]:
        async with self.transaction() as scope:
            return await scope.load_lead(lead_id)

    async def find_lead_by_phone(self, phone: str) -> Optional[Lead]:
        async with self.transaction() as scope:
            return await scope.find_lead_by_phone(phone)

    async def list_leads(self, status_code: Optional[str] = None, limit: int = 50) -> List[Lead]:
        query = select(LeadRow).order_by(LeadRow.created_at.desc()).limit(limit)
        if status_code:
            query = query.where(LeadRow.status_code == status_code)

        async with self.transaction() as scope:
            result = await scope.session.execute(query)
            return [_to_lead(row) for row in result.scalars().all()]

    async def save_lead(self, lead: Lead) -> None:
        async with self.transaction() as scope:
            await scope.save_lead(lead)

    async def append_event(self, event: ContactEvent) -> None:
        async with self.transaction() as scope:
            await scope.append_event(event)

    async def list_events(self, lead_id: str) -> List[ContactEvent]:
        async with self.transaction() as scope:
            return await scope.list_events(lead_id)

    async def list_status_definitions(self) -> List[StatusDefinition]:
        async with self.transaction() as scope:
            return await scope.list_status_definitions()

    async def seed_status_definitions(self, definitions: Iterable[StatusDefinition]) -> int:
        async with self.transaction() as scope:
            result = await scope.session.execute(select(StatusDefinitionRow.code))
            existing = set(result.scalars().all())

            added = 0
            for definition in definitions:
                if definition.code in existing:
                    continue
                scope.session.add(
                    StatusDefinitionRow(
                        code=definition.code,
                        label=definition.label,
                        order_index=definition.order_index,
                        color=definition.color,
                        is_active=definition.is_active,
                    )
                )
                added += 1
        logger.debug("Status seed added %d definition(s)", added)
        return added
