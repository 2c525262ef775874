"""
Leadflow - API
==============
FastAPI application for lead capture, contact logging and pipeline moves
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass
from datetime import datetime
from functools import lru_cache
from typing import Dict, List, Literal, Optional

from fastapi import Depends, FastAPI, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from leadflow.config import Settings, get_settings
from leadflow.core.contact_parser import format_parsed_contact, parse_contact_text, validate_parsed_contact
from leadflow.core.errors import DuplicateLead, InvalidTransition, LeadNotFound, ParseFailure, ValidationError
from leadflow.core.lead_fsm import LeadStatusEngine
from leadflow.core.lead_states import CallDisposition, ContactEventType, LeadSource
from leadflow.core.models import TransitionResult
from leadflow.core.phone import normalize_phone, to_display_form, validate_phone
from leadflow.core.repository import InMemoryLeadRepository, LeadRepository, seed_default_statuses
from leadflow.core.templates import TemplateCatalog, whatsapp_link
from leadflow.prospecting.pipeline import ProspectingPipeline, RawLead


def configure_logging(level: str = "INFO") -> None:
    root_logger = logging.getLogger()
    if not root_logger.handlers:
        logging.basicConfig(
            level=level,
            format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        )
    else:
        root_logger.setLevel(level)


logger = logging.getLogger(__name__)


# ── Wiring ────────────────────────────────────────────────────────────────────

@dataclass
class Services:
    repository: LeadRepository
    engine: LeadStatusEngine
    pipeline: ProspectingPipeline
    templates: TemplateCatalog


def build_repository(settings: Settings) -> LeadRepository:
    if settings.repository_backend == "sql":
        from leadflow.db.database import get_session_factory
        from leadflow.db.repository import SqlAlchemyLeadRepository

        return SqlAlchemyLeadRepository(get_session_factory())
    return InMemoryLeadRepository()


def build_services(settings: Settings, repository: Optional[LeadRepository] = None) -> Services:
    repository = repository or build_repository(settings)
    engine = LeadStatusEngine(
        repository,
        failed_call_threshold=settings.failed_call_threshold,
        excerpt_length=settings.whatsapp_excerpt_length,
    )
    return Services(
        repository=repository,
        engine=engine,
        pipeline=ProspectingPipeline(repository, engine),
        templates=TemplateCatalog(),
    )


@lru_cache(maxsize=1)
def get_services() -> Services:
    return build_services(get_settings())


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(settings.log_level)
    logger.info(
        "Starting %s (repository=%s, failed_call_threshold=%d)",
        settings.app_name, settings.repository_backend, settings.failed_call_threshold,
    )

    services = get_services()
    if settings.repository_backend == "sql":
        from leadflow.db.database import init_db

        await init_db()
    if settings.seed_statuses_on_startup:
        await seed_default_statuses(services.repository)

    yield
    logger.info("Application shutdown complete.")


app = FastAPI(
    title="Leadflow",
    description="Lead lifecycle and contact-channel engine",
    version="1.0.0",
    lifespan=lifespan,
)


# ── Request/Response Models ───────────────────────────────────────────────────

class LeadCreateRequest(BaseModel):
    name: str
    phone: str
    region: Optional[str] = None
    city: Optional[str] = None
    source: str = LeadSource.WHATSAPP.value
    notes: Optional[str] = None


class TextRequest(BaseModel):
    text: str
    source: Optional[str] = None


class CallLogRequest(BaseModel):
    disposition: CallDisposition
    notes: Optional[str] = Field(default=None, max_length=500)
    duration: Optional[int] = Field(default=None, ge=0, le=3600)


class WhatsAppSendRequest(BaseModel):
    template_code: str = Field(min_length=1)
    message: Optional[str] = None
    variables: Dict[str, str] = Field(default_factory=dict)


class AppointmentRequest(BaseModel):
    appointment_at: datetime
    notes: Optional[str] = None


class StatusChangeRequest(BaseModel):
    status_code: str
    note: Optional[str] = None
    reopen: bool = False


class BulkStatusRequest(BaseModel):
    lead_ids: List[str] = Field(min_length=1)
    status_code: str
    note: Optional[str] = None


class PhoneRequest(BaseModel):
    phone: str
    target: Literal["storage", "messaging", "display"] = "storage"


class RenderRequest(BaseModel):
    variables: Dict[str, str] = Field(default_factory=dict)


class LeadResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    phone: str
    region: Optional[str]
    city: Optional[str]
    source: LeadSource
    notes: Optional[str]
    status_code: Optional[str]
    call_count: int
    last_contact_at: Optional[datetime]
    next_action: Optional[str]
    next_action_at: Optional[datetime]
    appointment_date: Optional[datetime]
    created_at: datetime
    updated_at: datetime


class EventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    sequence: int
    type: ContactEventType
    disposition: Optional[CallDisposition]
    note: Optional[str]
    from_status: Optional[str]
    to_status: Optional[str]
    payload: dict
    created_at: datetime


def _lead_out(lead) -> dict:
    data = LeadResponse.model_validate(lead).model_dump(mode="json")
    data["phone_display"] = to_display_form(lead.phone)
    return data


def _events_out(events) -> List[dict]:
    return [EventResponse.model_validate(e).model_dump(mode="json") for e in events]


def _raise_for(error) -> None:
    if isinstance(error, LeadNotFound):
        raise HTTPException(status_code=404, detail=error.message)
    if isinstance(error, (InvalidTransition, DuplicateLead)):
        raise HTTPException(status_code=409, detail=error.message)
    if isinstance(error, ValidationError):
        raise HTTPException(status_code=422, detail=error.errors)
    if isinstance(error, ParseFailure):
        raise HTTPException(status_code=422, detail=error.reason)
    raise error


def _transition_out(result: TransitionResult) -> dict:
    if not result.ok:
        _raise_for(result.error)
    return {
        "lead": _lead_out(result.lead),
        "events": _events_out(result.events),
        "escalated": result.escalated,
    }


# ── Endpoints ─────────────────────────────────────────────────────────────────

@app.get("/")
async def root():
    return {
        "service": "Leadflow",
        "version": "1.0.0",
        "status": "running",
    }


@app.get("/health")
async def health():
    """Health check endpoint"""
    return {"status": "healthy"}


@app.get("/statuses")
async def list_statuses(services: Services = Depends(get_services)):
    statuses = await services.engine.status_definitions()
    return {"count": len(statuses), "statuses": [asdict(s) for s in statuses]}


@app.post("/leads")
async def create_lead(lead: LeadCreateRequest, services: Services = Depends(get_services)):
    """
    Ingest a single lead through the prospecting pipeline.

    The lead will be:
    1. Validated (name, Turkish mobile phone, source)
    2. Deduplicated by storage-form phone
    3. Stored on NEW with a creation note
    """
    raw = RawLead(**lead.model_dump())
    return await services.pipeline.ingest_lead(raw)


@app.post("/leads/parse")
async def parse_lead_text(req: TextRequest):
    """Parse pasted text without storing anything"""
    result = parse_contact_text(req.text)
    if not result.success:
        _raise_for(ParseFailure(result.error))

    is_valid, errors = validate_parsed_contact(result.data)
    return {
        "contact": asdict(result.data),
        "valid": is_valid,
        "errors": errors,
        "summary": format_parsed_contact(result.data),
    }


@app.post("/leads/from-text")
async def create_lead_from_text(req: TextRequest, services: Services = Depends(get_services)):
    return await services.pipeline.ingest_text(req.text, source=req.source)


@app.post("/leads/bulk-status")
async def bulk_status(req: BulkStatusRequest, services: Services = Depends(get_services)):
    results = await services.engine.bulk_set_status(req.lead_ids, req.status_code, req.note)
    return {
        "results": {
            lead_id: {"ok": r.ok, "status_code": r.lead.status_code if r.ok else None,
                      "error": None if r.ok else r.error.message}
            for lead_id, r in results.items()
        }
    }


@app.get("/leads")
async def list_leads(limit: int = 10, status: Optional[str] = None, services: Services = Depends(get_services)):
    """List leads with optional status filter"""
    leads = await services.repository.list_leads(status_code=status, limit=limit)
    return {"count": len(leads), "leads": [_lead_out(lead) for lead in leads]}


@app.get("/leads/{lead_id}")
async def get_lead(lead_id: str, services: Services = Depends(get_services)):
    """Get current status of a lead"""
    lead = await services.repository.load_lead(lead_id)
    if not lead:
        raise HTTPException(status_code=404, detail="Lead not found")
    return _lead_out(lead)


@app.get("/leads/{lead_id}/history")
async def get_lead_history(lead_id: str, services: Services = Depends(get_services)):
    """Get full event history for a lead (newest first)"""
    result = await services.engine.history(lead_id)
    if not result.ok:
        _raise_for(result.error)
    return {
        "lead_id": lead_id,
        "current_status": result.lead.status_code,
        "event_count": len(result.events),
        "events": _events_out(result.events),
    }


@app.get("/leads/{lead_id}/activity")
async def get_lead_activity(lead_id: str, limit: int = 5, services: Services = Depends(get_services)):
    lead, log = await services.engine.snapshot(lead_id)
    if not lead:
        raise HTTPException(status_code=404, detail="Lead not found")

    return {
        "lead_id": lead_id,
        "call_count": lead.call_count,
        "dispositions": log.disposition_counts(),
        "event_types": log.count_by_type(),
        "recent": _events_out(log.recent_activity(limit)),
    }


@app.post("/leads/{lead_id}/calls")
async def log_call(lead_id: str, req: CallLogRequest, services: Services = Depends(get_services)):
    result = await services.engine.log_call(lead_id, req.disposition, req.notes, req.duration)
    return _transition_out(result)


@app.post("/leads/{lead_id}/whatsapp")
async def log_whatsapp(lead_id: str, req: WhatsAppSendRequest, services: Services = Depends(get_services)):
    lead = await services.repository.load_lead(lead_id)
    if not lead:
        raise HTTPException(status_code=404, detail="Lead not found")

    message = req.message
    if message is None:
        try:
            message = services.templates.render(req.template_code, {"name": lead.name, **req.variables})
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc

    body = _transition_out(await services.engine.log_whatsapp_sent(lead_id, req.template_code, message))
    body["message"] = message
    body["link"] = whatsapp_link(lead.phone, message)
    return body


@app.post("/leads/{lead_id}/appointment")
async def schedule_appointment(lead_id: str, req: AppointmentRequest, services: Services = Depends(get_services)):
    result = await services.engine.schedule_appointment(lead_id, req.appointment_at, req.notes)
    return _transition_out(result)


@app.post("/leads/{lead_id}/status")
async def set_status(lead_id: str, req: StatusChangeRequest, services: Services = Depends(get_services)):
    result = await services.engine.set_status(lead_id, req.status_code, req.note, reopen=req.reopen)
    return _transition_out(result)


@app.post("/phone/normalize")
async def normalize(req: PhoneRequest):
    return {"phone": req.phone, "target": req.target, "normalized": normalize_phone(req.phone, req.target)}


@app.post("/phone/validate")
async def validate(req: PhoneRequest):
    return {"phone": req.phone, "valid": validate_phone(req.phone)}


@app.get("/templates")
async def list_templates(services: Services = Depends(get_services)):
    return {"templates": [asdict(t) for t in services.templates.list()]}


@app.post("/templates/{code}/render")
async def render_template(code: str, req: RenderRequest, services: Services = Depends(get_services)):
    try:
        return {"code": code, "message": services.templates.render(code, req.variables)}
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
