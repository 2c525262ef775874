"""
Prospecting Pipeline
====================
Ingests, validates, deduplicates leads from manual entry or pasted text
Then hands them to the status engine, which stores them on NEW
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass

from leadflow.core.contact_parser import ContactTextParser
from leadflow.core.errors import DuplicateLead
from leadflow.core.lead_fsm import LeadStatusEngine
from leadflow.core.lead_states import LeadSource
from leadflow.core.models import Lead
from leadflow.core.phone import to_storage_form, validate_phone
from leadflow.core.repository import LeadRepository

logger = logging.getLogger(__name__)


# ── Raw Lead Structure ────────────────────────────────────────────────────────

@dataclass
class RawLead:
    """Lead before validation"""
    name: str | None = None
    phone: str | None = None
    region: str | None = None
    city: str | None = None
    source: str | None = None
    notes: str | None = None


# ── Validation ────────────────────────────────────────────────────────────────

NAME_MIN, NAME_MAX = 2, 100
NOTES_MAX = 1000


def sanitize_lead(raw: RawLead) -> dict:
    """Validate and clean a raw lead"""
    errors = []

    name = " ".join((raw.name or "").split())
    if not name:
        errors.append("missing_name")
    elif len(name) < NAME_MIN:
        errors.append(f"name_too_short: {name}")
    elif len(name) > NAME_MAX:
        errors.append("name_too_long")

    phone = None
    if not raw.phone or not raw.phone.strip():
        errors.append("missing_phone")
    elif not validate_phone(raw.phone):
        errors.append(f"invalid_phone: {raw.phone}")
    else:
        phone = to_storage_form(raw.phone)

    try:
        source = LeadSource((raw.source or LeadSource.WHATSAPP.value).strip().lower())
    except ValueError:
        errors.append(f"invalid_source: {raw.source}")
        source = None

    notes = (raw.notes or "").strip() or None
    if notes and len(notes) > NOTES_MAX:
        errors.append("notes_too_long")

    if errors:
        return {"valid": False, "errors": errors}

    return {
        "valid": True,
        "name": name,
        "phone": phone,
        "region": (raw.region or "").strip() or None,
        "city": (raw.city or "").strip() or None,
        "source": source,
        "notes": notes,
    }


# ── Pipeline ──────────────────────────────────────────────────────────────────

class ProspectingPipeline:
    """Full pipeline: (parse) → validate → dedupe → create on NEW"""

    def __init__(
        self,
        repository: LeadRepository,
        engine: LeadStatusEngine,
        parser: ContactTextParser | None = None,
    ):
        self.repository = repository
        self.engine = engine
        self.parser = parser or ContactTextParser()

    async def ingest_lead(self, raw: RawLead) -> dict:
        """Process a single lead through the full pipeline"""

        # 1. Validate
        validation = sanitize_lead(raw)
        if not validation["valid"]:
            logger.info("Rejected lead: %s", ", ".join(validation["errors"]))
            return {
                "status": "rejected",
                "reason": "validation_failed",
                "errors": validation["errors"],
            }

        # 2. Create through the engine; the duplicate check runs in the same transaction
        lead = Lead(
            name=validation["name"],
            phone=validation["phone"],
            region=validation["region"],
            city=validation["city"],
            source=validation["source"],
            notes=validation["notes"],
        )
        result = await self.engine.create_lead(lead)
        if isinstance(result.error, DuplicateLead):
            return {
                "status": "duplicate",
                "lead_id": result.error.existing_id,
                "message": "Lead already exists",
            }
        if not result.ok:
            return {
                "status": "rejected",
                "reason": "status_unavailable",
                "errors": [result.error.message],
            }

        return {
            "status": "created",
            "lead_id": result.lead.id,
            "status_code": result.lead.status_code,
            "message": "Lead successfully ingested",
        }

    async def ingest_text(self, text: str, source: str | None = None) -> dict:
        """Parse a pasted message and ingest whatever it yields"""
        parsed = self.parser.parse(text)
        if not parsed.success:
            return {
                "status": "rejected",
                "reason": "parse_failed",
                "errors": [parsed.error],
            }

        contact = parsed.data
        raw = RawLead(
            name=contact.name,
            phone=contact.phone,
            city=contact.city,
            region=contact.region,
            source=source,
            notes=contact.raw[:NOTES_MAX],
        )
        result = await self.ingest_lead(raw)
        result["parsed"] = asdict(contact)
        return result
