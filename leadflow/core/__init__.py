"""Lead lifecycle core: phone rules, contact parsing, status engine, event log."""

from leadflow.core.contact_parser import ContactTextParser, parse_contact_text  # noqa: F401
from leadflow.core.errors import (  # noqa: F401
    DuplicateLead,
    InvalidTransition,
    LeadflowError,
    LeadNotFound,
    ParseFailure,
    ValidationError,
)
from leadflow.core.event_log import ContactEventLog  # noqa: F401
from leadflow.core.lead_fsm import LeadStatusEngine  # noqa: F401
from leadflow.core.lead_states import CallDisposition, ContactEventType, LeadSource, StatusCode  # noqa: F401
from leadflow.core.models import ContactEvent, Lead, ParsedContact, StatusDefinition  # noqa: F401
from leadflow.core.phone import normalize_phone, validate_phone  # noqa: F401
from leadflow.core.repository import InMemoryLeadRepository, seed_default_statuses  # noqa: F401
