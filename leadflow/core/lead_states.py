"""
Lead Pipeline States
====================
Every lead sits on exactly ONE pipeline status at any time.
Status codes are the canonical identifiers, never database ids.
"""

from enum import Enum


class StatusCode(str, Enum):
    NEW = "NEW"                        # Just captured
    TO_CALL = "TO_CALL"                # Queued for a phone call
    WA_SENT = "WA_SENT"                # WhatsApp sent, waiting on the prospect
    APPT_SET = "APPT_SET"              # Appointment booked
    APPT_CONFIRMED = "APPT_CONFIRMED"  # Prospect confirmed the appointment
    FOLLOW_UP = "FOLLOW_UP"            # Being followed up
    QUALIFIED = "QUALIFIED"            # Qualified prospect
    CLOSED = "CLOSED"                  # Closed (terminal)


class ContactEventType(str, Enum):
    CALL = "call"
    WHATSAPP = "whatsapp"
    STATUS_CHANGE = "status_change"
    NOTE = "note"
    APPOINTMENT = "appointment"


class CallDisposition(str, Enum):
    ANSWERED = "answered"
    BUSY = "busy"
    NO_ANSWER = "no_answer"
    UNREACHABLE = "unreachable"
    WRONG_NUMBER = "wrong_number"
    CALLBACK_REQUESTED = "callback_requested"


class LeadSource(str, Enum):
    WHATSAPP = "whatsapp"
    PHONE = "phone"
    REFERRAL = "referral"
    SOCIAL_MEDIA = "social_media"
    WEBSITE = "website"
    OTHER = "other"


class LeadTrigger(str, Enum):
    """Things that move a lead without an agent picking the status."""

    WHATSAPP_SENT = "WHATSAPP_SENT"
    APPOINTMENT_SCHEDULED = "APPOINTMENT_SCHEDULED"
    CALL_ATTEMPTS_EXHAUSTED = "CALL_ATTEMPTS_EXHAUSTED"
    MANUAL = "MANUAL"


INITIAL_STATUS = StatusCode.NEW

# Terminal for the manual path; reopening is an administrative override
TERMINAL_STATES = {
    StatusCode.CLOSED,
}

# trigger → status the lead is forced into, whatever it was before
TRANSITIONS = {
    LeadTrigger.WHATSAPP_SENT: StatusCode.WA_SENT,
    LeadTrigger.APPOINTMENT_SCHEDULED: StatusCode.APPT_SET,
    LeadTrigger.CALL_ATTEMPTS_EXHAUSTED: StatusCode.CLOSED,
}

# Seed data: (code, label, order_index, color)
DEFAULT_STATUSES = [
    (StatusCode.NEW, "Yeni", 10, "#D1FAE5"),
    (StatusCode.TO_CALL, "Aranacak", 20, "#E0E7FF"),
    (StatusCode.WA_SENT, "Cevap Bekleniyor (WA)", 40, "#FEF3C7"),
    (StatusCode.APPT_SET, "Randevu Verildi", 50, "#FDE68A"),
    (StatusCode.APPT_CONFIRMED, "Randevu Onaylandı", 55, "#FCD34D"),
    (StatusCode.FOLLOW_UP, "Takipte", 60, "#DBEAFE"),
    (StatusCode.QUALIFIED, "Nitelikli", 70, "#A7F3D0"),
    (StatusCode.CLOSED, "Kapanmış", 90, "#E5E7EB"),
]

APPOINTMENT_NEXT_ACTION = "Randevu"
ESCALATION_REASON = "{threshold} consecutive failed call attempts"
