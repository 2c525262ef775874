"""
Domain Models
=============
Lead = current status + contact data
ContactEvent = immutable history entry
These are plain in-memory records; persistence lives behind the repository.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from leadflow.core.errors import LeadflowError
from leadflow.core.lead_states import CallDisposition, ContactEventType, LeadSource


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


@dataclass
class StatusDefinition:
    code: str
    label: str
    order_index: int
    color: Optional[str] = None
    is_active: bool = True


@dataclass
class Lead:
    """
    A prospect moving through the pipeline.
    `call_count` and `status_code` are only changed by the status engine.
    """
    name: str
    phone: str
    id: str = field(default_factory=new_id)
    region: Optional[str] = None
    city: Optional[str] = None
    source: LeadSource = LeadSource.WHATSAPP
    notes: Optional[str] = None

    # Pipeline
    status_code: Optional[str] = None
    call_count: int = 0
    last_contact_at: Optional[datetime] = None
    next_action: Optional[str] = None
    next_action_at: Optional[datetime] = None
    appointment_date: Optional[datetime] = None

    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class ContactEvent:
    """One fact in a lead's history. Never updated or deleted."""

    lead_id: str
    type: ContactEventType
    note: Optional[str] = None
    disposition: Optional[CallDisposition] = None
    from_status: Optional[str] = None
    to_status: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)
    sequence: int = 0
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class ParsedContact:
    raw: str
    name: Optional[str] = None
    phone: Optional[str] = None
    city: Optional[str] = None
    region: Optional[str] = None
    confidence: int = 0


@dataclass(frozen=True)
class ParseResult:
    success: bool
    data: Optional[ParsedContact] = None
    error: Optional[str] = None


@dataclass
class TransitionResult:
    """Outcome of one engine operation on one lead."""

    ok: bool
    lead: Optional[Lead] = None
    events: List[ContactEvent] = field(default_factory=list)
    error: Optional[LeadflowError] = None

    @classmethod
    def success(cls, lead: Lead, events: List[ContactEvent]) -> "TransitionResult":
        return cls(ok=True, lead=lead, events=list(events))

    @classmethod
    def failure(cls, error: LeadflowError) -> "TransitionResult":
        return cls(ok=False, error=error)

    @property
    def escalated(self) -> bool:
        return any(e.payload.get("automatic") for e in self.events)

    def unwrap(self) -> Lead:
        if not self.ok:
            raise self.error
        return self.lead
