import asyncio
from datetime import datetime, timezone

import pytest

from leadflow.core.errors import DuplicateLead, InvalidTransition, LeadNotFound, ValidationError
from leadflow.core.lead_fsm import LeadStatusEngine
from leadflow.core.lead_states import CallDisposition, ContactEventType, LeadSource, StatusCode
from leadflow.core.models import Lead
from leadflow.core.repository import InMemoryLeadRepository, seed_default_statuses


def events_of(engine, lead_id):
    return asyncio.run(engine.event_log(lead_id)).oldest_first()


def status_changes(engine, lead_id):
    return [e for e in events_of(engine, lead_id) if e.type == ContactEventType.STATUS_CHANGE]


def call(engine, lead_id, disposition="unreachable", **kwargs):
    return asyncio.run(engine.log_call(lead_id, disposition, **kwargs))


# ── Creation ──────────────────────────────────────────────────────────────────

def test_create_lead_starts_on_new_with_a_note(engine, make_lead):
    lead = make_lead()

    assert lead.status_code == "NEW"
    events = events_of(engine, lead.id)
    assert len(events) == 1
    assert events[0].type == ContactEventType.NOTE
    assert events[0].from_status is None
    assert events[0].to_status == "NEW"
    assert events[0].sequence == 1


def test_create_lead_fails_when_initial_status_is_inactive(repository, engine):
    asyncio.run(repository.set_status_active("NEW", False))

    result = asyncio.run(engine.create_lead(Lead(name="Ahmet", phone="05321234567")))

    assert not result.ok
    assert isinstance(result.error, InvalidTransition)
    assert asyncio.run(repository.list_leads()) == []


def test_create_lead_rejects_blank_name_and_bad_phone(repository, engine):
    result = asyncio.run(engine.create_lead(Lead(name="   ", phone="0444 123")))

    assert not result.ok
    assert isinstance(result.error, ValidationError)
    assert result.error.errors == ["missing_name", "invalid_phone: 0444 123"]
    assert asyncio.run(repository.list_leads()) == []


def test_create_lead_canonicalises_fields(engine):
    lead = asyncio.run(
        engine.create_lead(Lead(name="  Ayşe   Kaya ", phone="+90 555 123 45 67", source="phone"))
    ).unwrap()

    assert lead.name == "Ayşe Kaya"
    assert lead.phone == "05551234567"
    assert lead.source == LeadSource.PHONE
    assert events_of(engine, lead.id)[0].payload == {"source": "phone"}


def test_create_lead_rejects_unknown_source(engine):
    result = asyncio.run(engine.create_lead(Lead(name="Ayşe Kaya", phone="05551234567", source="fax")))

    assert isinstance(result.error, ValidationError)
    assert result.error.errors == ["invalid_source: fax"]


def test_create_lead_rejects_duplicate_phone(repository, engine, make_lead):
    first = make_lead()

    result = asyncio.run(engine.create_lead(Lead(name="Ahmet Y.", phone="+90 532 123 45 67")))

    assert isinstance(result.error, DuplicateLead)
    assert result.error.existing_id == first.id
    assert len(asyncio.run(repository.list_leads())) == 1


def test_concurrent_creates_with_same_phone_store_one_lead():
    async def scenario():
        repository = InMemoryLeadRepository()
        await seed_default_statuses(repository)
        engine = LeadStatusEngine(repository)
        results = await asyncio.gather(
            engine.create_lead(Lead(name="Ayşe Kaya", phone="05551234567")),
            engine.create_lead(Lead(name="Ayşe Kaya", phone="+905551234567")),
        )
        return results, await repository.list_leads()

    results, leads = asyncio.run(scenario())

    assert sorted(r.ok for r in results) == [False, True]
    assert len(leads) == 1


# ── Calls ─────────────────────────────────────────────────────────────────────

def test_log_call_counts_attempt(engine, make_lead, clock):
    lead = make_lead()

    result = call(engine, lead.id, "answered", notes="Interested", duration=120)

    assert result.ok
    assert result.lead.call_count == 1
    assert result.lead.last_contact_at == clock.now
    assert result.lead.status_code == "NEW"
    assert [e.type for e in result.events] == [ContactEventType.CALL]
    event = result.events[0]
    assert event.disposition == CallDisposition.ANSWERED
    assert event.note == "Interested (duration: 120s, total calls: 1)"
    assert event.payload == {"duration": 120, "call_count": 1}
    assert not result.escalated


def test_unreachable_call_with_two_prior_attempts_closes_lead(engine, make_lead):
    lead = make_lead(call_count=2)

    result = call(engine, lead.id, "unreachable")

    assert result.ok
    assert result.lead.call_count == 3
    assert result.lead.status_code == "CLOSED"
    assert [e.type for e in result.events] == [ContactEventType.CALL, ContactEventType.STATUS_CHANGE]
    change = result.events[1]
    assert change.from_status == "NEW"
    assert change.to_status == "CLOSED"
    assert change.note == "3 consecutive failed call attempts"
    assert change.payload["automatic"] is True
    assert result.escalated


def test_three_unreachable_calls_close_lead_exactly_once(engine, make_lead):
    lead = make_lead()

    first = call(engine, lead.id)
    second = call(engine, lead.id)
    assert first.lead.status_code == "NEW"
    assert second.lead.status_code == "NEW"

    third = call(engine, lead.id)
    assert third.lead.status_code == "CLOSED"
    assert third.lead.call_count == 3

    fourth = call(engine, lead.id)
    assert fourth.lead.status_code == "CLOSED"
    assert fourth.lead.call_count == 4
    assert not fourth.escalated

    assert len(status_changes(engine, lead.id)) == 1


def test_other_disposition_breaks_the_unreachable_streak(engine, make_lead):
    lead = make_lead()

    for disposition in ["unreachable", "busy", "unreachable", "unreachable"]:
        result = call(engine, lead.id, disposition)
    assert result.lead.status_code == "NEW"
    assert result.lead.call_count == 4

    result = call(engine, lead.id, "unreachable")
    assert result.lead.status_code == "CLOSED"


def test_reachable_call_never_escalates(engine, make_lead):
    lead = make_lead(call_count=10)

    result = call(engine, lead.id, "no_answer")

    assert result.lead.status_code == "NEW"
    assert result.lead.call_count == 11


def test_failed_escalation_leaves_lead_untouched(repository, engine, make_lead):
    lead = make_lead(call_count=2)
    asyncio.run(repository.set_status_active("CLOSED", False))

    result = call(engine, lead.id, "unreachable")

    assert not result.ok
    assert isinstance(result.error, InvalidTransition)
    stored = asyncio.run(repository.load_lead(lead.id))
    assert stored.call_count == 2
    assert stored.status_code == "NEW"
    assert len(events_of(engine, lead.id)) == 1


def test_log_call_rejects_bad_input(engine, make_lead):
    lead = make_lead()

    unknown = call(engine, lead.id, "voicemail")
    negative = call(engine, lead.id, "answered", duration=-5)

    assert isinstance(unknown.error, ValidationError)
    assert isinstance(negative.error, ValidationError)
    with pytest.raises(ValidationError):
        unknown.unwrap()
    assert len(events_of(engine, lead.id)) == 1


def test_call_count_is_monotonic_across_channels(engine, make_lead):
    lead = make_lead()
    counts = []

    counts.append(call(engine, lead.id, "busy").lead.call_count)
    asyncio.run(engine.log_whatsapp_sent(lead.id, "FIRST_CONTACT", "Merhaba"))
    counts.append(call(engine, lead.id, "answered").lead.call_count)
    asyncio.run(engine.schedule_appointment(lead.id, datetime(2024, 6, 1, 14, 0, tzinfo=timezone.utc)))
    counts.append(call(engine, lead.id, "callback_requested").lead.call_count)

    assert counts == [1, 2, 3]


def test_concurrent_calls_on_one_lead_are_serialised():
    async def scenario():
        repository = InMemoryLeadRepository()
        await seed_default_statuses(repository)
        engine = LeadStatusEngine(repository)
        lead = (await engine.create_lead(Lead(name="Ayşe Kaya", phone="05331234567"))).unwrap()

        await asyncio.gather(*(engine.log_call(lead.id, "unreachable") for _ in range(3)))
        return await repository.load_lead(lead.id), await engine.event_log(lead.id)

    lead, log = asyncio.run(scenario())

    assert lead.call_count == 3
    assert lead.status_code == "CLOSED"
    assert [e.sequence for e in log] == [1, 2, 3, 4, 5]


# ── WhatsApp ──────────────────────────────────────────────────────────────────

def test_whatsapp_moves_new_lead_to_wa_sent(engine, make_lead):
    lead = make_lead()

    result = asyncio.run(engine.log_whatsapp_sent(lead.id, "FIRST_CONTACT", "x" * 250))

    assert result.lead.status_code == "WA_SENT"
    assert [e.type for e in result.events] == [ContactEventType.WHATSAPP, ContactEventType.STATUS_CHANGE]
    sent = result.events[0]
    assert sent.to_status == "WA_SENT"
    assert sent.payload["template_code"] == "FIRST_CONTACT"
    assert len(sent.payload["excerpt"]) == 100
    assert result.lead.call_count == 0


def test_whatsapp_overrides_appointment_status(engine, make_lead):
    lead = make_lead()
    asyncio.run(engine.schedule_appointment(lead.id, datetime(2024, 6, 1, 14, 0, tzinfo=timezone.utc)))

    result = asyncio.run(engine.log_whatsapp_sent(lead.id, "APPOINTMENT_REMINDER", "Yarın görüşürüz"))

    assert result.lead.status_code == "WA_SENT"
    assert result.events[-1].from_status == "APPT_SET"


def test_whatsapp_on_wa_sent_lead_adds_no_status_change(engine, make_lead):
    lead = make_lead()
    asyncio.run(engine.log_whatsapp_sent(lead.id, "FIRST_CONTACT", "Merhaba"))

    result = asyncio.run(engine.log_whatsapp_sent(lead.id, "FOLLOW_UP", "Tekrar merhaba"))

    assert [e.type for e in result.events] == [ContactEventType.WHATSAPP]
    assert len(status_changes(engine, lead.id)) == 1


def test_whatsapp_requires_template_code(engine, make_lead):
    lead = make_lead()

    result = asyncio.run(engine.log_whatsapp_sent(lead.id, "  ", "Merhaba"))

    assert isinstance(result.error, ValidationError)


# ── Appointments ──────────────────────────────────────────────────────────────

def test_schedule_appointment_sets_next_action(engine, make_lead):
    lead = make_lead()
    when = datetime(2024, 6, 1, 14, 30, tzinfo=timezone.utc)

    result = asyncio.run(engine.schedule_appointment(lead.id, when, "Ofiste görüşme"))

    updated = result.lead
    assert updated.status_code == "APPT_SET"
    assert updated.appointment_date == when
    assert updated.next_action == "Randevu"
    assert updated.next_action_at == when
    assert [e.type for e in result.events] == [ContactEventType.APPOINTMENT, ContactEventType.STATUS_CHANGE]
    assert result.events[0].note == "Ofiste görüşme - 01.06.2024 14:30"


# ── Manual moves ──────────────────────────────────────────────────────────────

def test_set_status_appends_status_change(engine, make_lead):
    lead = make_lead()

    result = asyncio.run(engine.set_status(lead.id, StatusCode.FOLLOW_UP))

    assert result.lead.status_code == "FOLLOW_UP"
    event = result.events[0]
    assert event.type == ContactEventType.STATUS_CHANGE
    assert (event.from_status, event.to_status) == ("NEW", "FOLLOW_UP")
    assert event.note == "Status changed to Takipte"
    assert event.payload["trigger"] == "MANUAL"


def test_set_status_to_same_status_still_logs(engine, make_lead):
    lead = make_lead()

    asyncio.run(engine.set_status(lead.id, "NEW", "Checked"))

    assert len(status_changes(engine, lead.id)) == 1


def test_set_status_unknown_code_leaves_lead_unchanged(repository, engine, make_lead):
    lead = make_lead()

    result = asyncio.run(engine.set_status(lead.id, "NOPE"))

    assert not result.ok
    assert isinstance(result.error, InvalidTransition)
    assert result.error.status_code == "NOPE"
    assert asyncio.run(repository.load_lead(lead.id)).status_code == "NEW"
    assert len(events_of(engine, lead.id)) == 1


def test_set_status_inactive_code_fails(repository, engine, make_lead):
    lead = make_lead()
    asyncio.run(repository.set_status_active("QUALIFIED", False))

    result = asyncio.run(engine.set_status(lead.id, "QUALIFIED"))

    assert isinstance(result.error, InvalidTransition)


def test_closed_lead_needs_reopen(engine, make_lead):
    lead = make_lead(call_count=2)
    call(engine, lead.id)

    blocked = asyncio.run(engine.set_status(lead.id, "FOLLOW_UP"))
    assert isinstance(blocked.error, InvalidTransition)

    reopened = asyncio.run(engine.set_status(lead.id, "FOLLOW_UP", reopen=True))
    assert reopened.lead.status_code == "FOLLOW_UP"
    assert reopened.events[0].payload["reopened"] is True


def test_bulk_set_status_reports_per_lead(engine, make_lead):
    first = make_lead()
    second = make_lead(phone="05339876543")

    results = asyncio.run(engine.bulk_set_status([first.id, second.id, "missing"], "TO_CALL"))

    assert results[first.id].lead.status_code == "TO_CALL"
    assert results[second.id].lead.status_code == "TO_CALL"
    assert isinstance(results["missing"].error, LeadNotFound)


# ── Reads and errors ──────────────────────────────────────────────────────────

def test_history_is_newest_first(engine, make_lead):
    lead = make_lead()
    call(engine, lead.id, "busy")
    asyncio.run(engine.set_status(lead.id, "TO_CALL"))

    result = asyncio.run(engine.history(lead.id))

    assert [e.sequence for e in result.events] == [3, 2, 1]
    assert result.lead.status_code == "TO_CALL"


def test_last_event_matches_current_status(engine, make_lead):
    lead = make_lead()

    for result in [
        call(engine, lead.id, "answered"),
        asyncio.run(engine.log_whatsapp_sent(lead.id, "FIRST_CONTACT", "Merhaba")),
        asyncio.run(engine.schedule_appointment(lead.id, datetime(2024, 6, 1, tzinfo=timezone.utc))),
        asyncio.run(engine.set_status(lead.id, "APPT_CONFIRMED")),
    ]:
        assert result.events[-1].to_status == result.lead.status_code


@pytest.mark.parametrize(
    "operation",
    [
        lambda engine: engine.log_call("missing", "answered"),
        lambda engine: engine.log_whatsapp_sent("missing", "FIRST_CONTACT", "Merhaba"),
        lambda engine: engine.schedule_appointment("missing", datetime(2024, 6, 1, tzinfo=timezone.utc)),
        lambda engine: engine.set_status("missing", "TO_CALL"),
        lambda engine: engine.history("missing"),
    ],
)
def test_unknown_lead_is_not_found(engine, operation):
    result = asyncio.run(operation(engine))

    assert not result.ok
    assert isinstance(result.error, LeadNotFound)
    assert result.error.message == "Lead missing not found"


class CountingRepository(InMemoryLeadRepository):
    def __init__(self):
        super().__init__()
        self.transactions = 0

    def transaction(self, lead_id):
        self.transactions += 1
        return super().transaction(lead_id)


def test_history_reads_lead_and_events_in_one_transaction():
    repository = CountingRepository()
    asyncio.run(seed_default_statuses(repository))
    engine = LeadStatusEngine(repository)
    lead = asyncio.run(engine.create_lead(Lead(name="Ayşe Kaya", phone="05551234567"))).unwrap()
    repository.transactions = 0

    result = asyncio.run(engine.history(lead.id))

    assert result.ok
    assert repository.transactions == 1


def test_history_agrees_with_lead_after_interleaved_operations():
    async def scenario():
        repository = InMemoryLeadRepository()
        await seed_default_statuses(repository)
        engine = LeadStatusEngine(repository)
        lead = (await engine.create_lead(Lead(name="Ayşe Kaya", phone="05551234567"))).unwrap()

        reads = []
        for _ in range(3):
            _, history = await asyncio.gather(engine.log_call(lead.id, "unreachable"), engine.history(lead.id))
            reads.append(history)
        reads.append(await engine.history(lead.id))
        return reads

    reads = asyncio.run(scenario())

    for result in reads:
        assert result.events[0].to_status == result.lead.status_code
    assert reads[-1].lead.status_code == "CLOSED"


def test_snapshot_of_unknown_lead(engine):
    lead, log = asyncio.run(engine.snapshot("missing"))

    assert lead is None
    assert len(log) == 0


def test_locks_are_released_after_use(repository, engine, make_lead):
    lead = make_lead()
    call(engine, lead.id, "busy")
    call(engine, "missing", "busy")
    asyncio.run(engine.history("missing"))

    assert repository.open_locks == 0


def test_waiting_transaction_keeps_the_lock_alive():
    async def scenario():
        repository = InMemoryLeadRepository()
        order = []

        async def worker(name):
            async with repository.transaction("lead-1"):
                order.append(f"{name}-in")
                await asyncio.sleep(0)
                order.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))
        return order, repository.open_locks

    order, open_locks = asyncio.run(scenario())

    assert order == ["a-in", "a-out", "b-in", "b-out"]
    assert open_locks == 0
