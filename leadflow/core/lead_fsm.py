"""
Lead Status Engine
==================
Load the lead, decide the next status, write an
immutable event, update the lead. Every operation runs inside one repository
transaction scoped to the lead, so the status and its event land together.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Union

from leadflow.core.errors import DuplicateLead, InvalidTransition, LeadNotFound, ValidationError
from leadflow.core.event_log import ContactEventLog
from leadflow.core.lead_states import (
    APPOINTMENT_NEXT_ACTION,
    ESCALATION_REASON,
    INITIAL_STATUS,
    TERMINAL_STATES,
    TRANSITIONS,
    CallDisposition,
    ContactEventType,
    LeadSource,
    LeadTrigger,
    StatusCode,
)
from leadflow.core.models import ContactEvent, Lead, StatusDefinition, TransitionResult, utcnow
from leadflow.core.phone import to_storage_form, validate_phone
from leadflow.core.repository import LeadRepository, LeadStore

logger = logging.getLogger(__name__)

StatusLike = Union[StatusCode, str]


def _code(status: StatusLike) -> str:
    return status.value if isinstance(status, StatusCode) else status


class LeadStatusEngine:
    """
    Drives leads through the pipeline.
    The only writer of `status_code`, `call_count` and the event log.
    """

    def __init__(
        self,
        repository: LeadRepository,
        *,
        failed_call_threshold: int = 3,
        excerpt_length: int = 100,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.repository = repository
        self.failed_call_threshold = failed_call_threshold
        self.excerpt_length = excerpt_length
        self.clock = clock

    # ── Helpers ───────────────────────────────────────────────────────────────

    @staticmethod
    async def _active_statuses(store: LeadStore) -> Dict[str, StatusDefinition]:
        return {s.code: s for s in await store.list_status_definitions() if s.is_active}

    @staticmethod
    def _require_status(statuses: Dict[str, StatusDefinition], code: str) -> Optional[InvalidTransition]:
        if code not in statuses:
            return InvalidTransition(f"Status '{code}' is not an active pipeline status", status_code=code)
        return None

    def _record(
        self,
        lead: Lead,
        log: ContactEventLog,
        event_type: ContactEventType,
        note: str,
        now: datetime,
        *,
        disposition: Optional[CallDisposition] = None,
        payload: Optional[dict] = None,
        from_status: Optional[str] = None,
        to_status: Optional[str] = None,
    ) -> ContactEvent:
        event = ContactEvent(
            lead_id=lead.id,
            type=event_type,
            note=note,
            disposition=disposition,
            from_status=from_status if from_status is not None else lead.status_code,
            to_status=to_status or lead.status_code,
            payload=payload or {},
            sequence=log.next_sequence,
            created_at=now,
        )
        return log.append(event)

    def _change_status(
        self,
        lead: Lead,
        log: ContactEventLog,
        to_code: str,
        trigger: LeadTrigger,
        reason: str,
        now: datetime,
        **extra,
    ) -> ContactEvent:
        from_code = lead.status_code
        lead.status_code = to_code
        lead.updated_at = now

        logger.info("Lead %s: %s → %s via %s", lead.id[:8], from_code, to_code, trigger.value)
        return self._record(
            lead,
            log,
            ContactEventType.STATUS_CHANGE,
            reason,
            now,
            from_status=from_code,
            payload={"trigger": trigger.value, "reason": reason, **extra},
        )

    @staticmethod
    async def _commit(store: LeadStore, lead: Lead, events: Iterable[ContactEvent]) -> None:
        # Lead first: an event always describes a status that is already applied
        await store.save_lead(lead)
        for event in events:
            await store.append_event(event)

    def _should_escalate(self, lead: Lead, log: ContactEventLog, disposition: CallDisposition) -> bool:
        if disposition != CallDisposition.UNREACHABLE:
            return False
        if lead.call_count < self.failed_call_threshold:
            return False
        if lead.status_code == StatusCode.CLOSED.value:
            return False
        # Calls made before the log existed count toward call_count but cannot break the streak
        recent = log.calls()[-self.failed_call_threshold:]
        return all(call.disposition == CallDisposition.UNREACHABLE for call in recent)

    # ── Creation ──────────────────────────────────────────────────────────────

    @staticmethod
    def _clean_new_lead(lead: Lead) -> List[str]:
        """Trim the name, canonicalise the phone and source in place. Returns field errors."""
        errors = []

        lead.name = " ".join((lead.name or "").split())
        if not lead.name:
            errors.append("missing_name")

        if not lead.phone or not validate_phone(lead.phone):
            errors.append(f"invalid_phone: {lead.phone}")
        else:
            lead.phone = to_storage_form(lead.phone)

        try:
            lead.source = LeadSource(lead.source)
        except ValueError:
            errors.append(f"invalid_source: {lead.source}")

        return errors

    async def create_lead(self, lead: Lead, note: str = "Lead created") -> TransitionResult:
        """Store a new lead on its initial status with a creation note."""
        errors = self._clean_new_lead(lead)
        if errors:
            logger.info("Rejected new lead: %s", ", ".join(errors))
            return TransitionResult.failure(ValidationError(errors))

        async with self.repository.transaction(lead.id) as store:
            statuses = await self._active_statuses(store)
            initial = lead.status_code or INITIAL_STATUS.value
            error = self._require_status(statuses, initial)
            if error:
                return TransitionResult.failure(error)

            existing = await store.find_lead_by_phone(lead.phone)
            if existing is not None:
                return TransitionResult.failure(DuplicateLead(lead.phone, existing.id))

            now = self.clock()
            lead.status_code = None
            lead.created_at = lead.updated_at = now
            event = self._record(
                lead, ContactEventLog(lead.id), ContactEventType.NOTE, note, now,
                to_status=initial, payload={"source": lead.source.value},
            )
            lead.status_code = initial
            await self._commit(store, lead, [event])

        logger.info("Lead %s created on %s", lead.id[:8], initial)
        return TransitionResult.success(lead, [event])

    # ── Calls ─────────────────────────────────────────────────────────────────

    async def log_call(
        self,
        lead_id: str,
        disposition: Union[CallDisposition, str],
        notes: Optional[str] = None,
        duration: Optional[int] = None,
    ) -> TransitionResult:
        """
        Count a call attempt and, on the last allowed unreachable attempt,
        close the lead in the same unit of work.
        """
        try:
            disposition = CallDisposition(disposition)
        except ValueError:
            return TransitionResult.failure(ValidationError([f"Unknown call disposition '{disposition}'"]))
        if duration is not None and duration < 0:
            return TransitionResult.failure(ValidationError(["Call duration cannot be negative"]))

        async with self.repository.transaction(lead_id) as store:
            # 1. Load current lead
            lead = await store.load_lead(lead_id)
            if lead is None:
                return TransitionResult.failure(LeadNotFound(lead_id))
            statuses = await self._active_statuses(store)
            log = ContactEventLog(lead_id, await store.list_events(lead_id))

            # 2. Count the attempt
            now = self.clock()
            lead.call_count += 1
            lead.last_contact_at = now
            lead.updated_at = now

            summary = f"duration: {duration or 0}s, total calls: {lead.call_count}"
            note = f"{notes} ({summary})" if notes else f"Call logged ({summary})"
            events = [
                self._record(
                    lead, log, ContactEventType.CALL, note, now,
                    disposition=disposition,
                    payload={"duration": duration or 0, "call_count": lead.call_count},
                )
            ]

            # 3. Auto-escalation
            if self._should_escalate(lead, log, disposition):
                target = TRANSITIONS[LeadTrigger.CALL_ATTEMPTS_EXHAUSTED].value
                error = self._require_status(statuses, target)
                if error:
                    return TransitionResult.failure(error)

                reason = ESCALATION_REASON.format(threshold=self.failed_call_threshold)
                events.append(
                    self._change_status(
                        lead, log, target, LeadTrigger.CALL_ATTEMPTS_EXHAUSTED, reason, now,
                        automatic=True,
                    )
                )
                logger.warning("Lead %s closed automatically: %s", lead_id[:8], reason)

            # 4. Persist lead + events together
            await self._commit(store, lead, events)

        return TransitionResult.success(lead, events)

    # ── WhatsApp ──────────────────────────────────────────────────────────────

    async def log_whatsapp_sent(self, lead_id: str, template_code: str, message: str) -> TransitionResult:
        """Sending always parks the lead on WA_SENT, whatever status it had."""
        if not template_code or not template_code.strip():
            return TransitionResult.failure(ValidationError(["Template code is required"]))

        async with self.repository.transaction(lead_id) as store:
            lead = await store.load_lead(lead_id)
            if lead is None:
                return TransitionResult.failure(LeadNotFound(lead_id))
            statuses = await self._active_statuses(store)
            target = TRANSITIONS[LeadTrigger.WHATSAPP_SENT].value
            error = self._require_status(statuses, target)
            if error:
                return TransitionResult.failure(error)

            log = ContactEventLog(lead_id, await store.list_events(lead_id))
            now = self.clock()
            from_code = lead.status_code
            lead.last_contact_at = now
            lead.updated_at = now

            excerpt = (message or "")[: self.excerpt_length]
            events = [
                self._record(
                    lead, log, ContactEventType.WHATSAPP,
                    f"WhatsApp message sent: {template_code} - {excerpt}", now,
                    to_status=target,
                    payload={"template_code": template_code, "excerpt": excerpt},
                )
            ]
            if from_code != target:
                events.append(
                    self._change_status(
                        lead, log, target, LeadTrigger.WHATSAPP_SENT,
                        f"WhatsApp template {template_code} sent", now,
                    )
                )
            await self._commit(store, lead, events)

        return TransitionResult.success(lead, events)

    # ── Appointments ──────────────────────────────────────────────────────────

    async def schedule_appointment(
        self,
        lead_id: str,
        appointment_at: datetime,
        notes: Optional[str] = None,
    ) -> TransitionResult:
        async with self.repository.transaction(lead_id) as store:
            lead = await store.load_lead(lead_id)
            if lead is None:
                return TransitionResult.failure(LeadNotFound(lead_id))
            statuses = await self._active_statuses(store)
            target = TRANSITIONS[LeadTrigger.APPOINTMENT_SCHEDULED].value
            error = self._require_status(statuses, target)
            if error:
                return TransitionResult.failure(error)

            log = ContactEventLog(lead_id, await store.list_events(lead_id))
            now = self.clock()
            from_code = lead.status_code
            lead.appointment_date = appointment_at
            lead.next_action = APPOINTMENT_NEXT_ACTION
            lead.next_action_at = appointment_at
            lead.updated_at = now

            label = notes or "Appointment scheduled"
            events = [
                self._record(
                    lead, log, ContactEventType.APPOINTMENT,
                    f"{label} - {appointment_at:%d.%m.%Y %H:%M}", now,
                    to_status=target,
                    payload={"appointment_at": appointment_at.isoformat()},
                )
            ]
            if from_code != target:
                events.append(
                    self._change_status(lead, log, target, LeadTrigger.APPOINTMENT_SCHEDULED, label, now)
                )
            await self._commit(store, lead, events)

        return TransitionResult.success(lead, events)

    # ── Manual moves ──────────────────────────────────────────────────────────

    async def set_status(
        self,
        lead_id: str,
        status_code: StatusLike,
        note: Optional[str] = None,
        *,
        reopen: bool = False,
    ) -> TransitionResult:
        """Agent-chosen move. Always leaves a status_change event, nothing else."""
        code = _code(status_code)

        async with self.repository.transaction(lead_id) as store:
            lead = await store.load_lead(lead_id)
            if lead is None:
                return TransitionResult.failure(LeadNotFound(lead_id))
            statuses = await self._active_statuses(store)
            error = self._require_status(statuses, code)
            if error:
                return TransitionResult.failure(error)

            current = lead.status_code
            if current in {s.value for s in TERMINAL_STATES} and code != current and not reopen:
                return TransitionResult.failure(
                    InvalidTransition(f"Lead {lead_id} is {current}; reopening needs an override", status_code=code)
                )

            log = ContactEventLog(lead_id, await store.list_events(lead_id))
            reason = note or f"Status changed to {statuses[code].label}"
            extra = {"reopened": True} if reopen and current != code else {}
            event = self._change_status(lead, log, code, LeadTrigger.MANUAL, reason, self.clock(), **extra)
            await self._commit(store, lead, [event])

        return TransitionResult.success(lead, [event])

    async def bulk_set_status(
        self,
        lead_ids: Iterable[str],
        status_code: StatusLike,
        note: Optional[str] = None,
    ) -> Dict[str, TransitionResult]:
        """Each lead moves on its own; one failure does not hold back the rest."""
        lead_ids = list(dict.fromkeys(lead_ids))
        results = await asyncio.gather(*(self.set_status(lead_id, status_code, note) for lead_id in lead_ids))
        return dict(zip(lead_ids, results))

    # ── Reads ─────────────────────────────────────────────────────────────────

    async def snapshot(self, lead_id: str) -> Tuple[Optional[Lead], ContactEventLog]:
        """Lead and event log read in one transaction, so the two always agree."""
        async with self.repository.transaction(lead_id) as store:
            lead = await store.load_lead(lead_id)
            events = await store.list_events(lead_id) if lead is not None else []
        return lead, ContactEventLog(lead_id, events)

    async def history(self, lead_id: str) -> TransitionResult:
        """The lead with its events, newest first."""
        lead, log = await self.snapshot(lead_id)
        if lead is None:
            return TransitionResult.failure(LeadNotFound(lead_id))
        return TransitionResult.success(lead, log.newest_first())

    async def event_log(self, lead_id: str) -> ContactEventLog:
        return ContactEventLog(lead_id, await self.repository.list_events(lead_id))

    async def status_definitions(self) -> List[StatusDefinition]:
        return await self.repository.list_status_definitions()
