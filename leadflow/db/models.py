"""
Database Models
===============
LeadRow = current status + contact data
ContactEventRow = immutable history (audit log)
StatusDefinitionRow = pipeline stages, keyed by code
"""

import uuid
from datetime import datetime, timezone
from sqlalchemy import Boolean, Column, String, DateTime, Integer, JSON, ForeignKey, Text, Index
from sqlalchemy.orm import DeclarativeBase, relationship


def utcnow():
    return datetime.now(timezone.utc)


def new_uuid():
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    pass


class StatusDefinitionRow(Base):
    __tablename__ = "status_definitions"

    code = Column(String(50), primary_key=True)
    label = Column(String(100), nullable=False)
    order_index = Column(Integer, nullable=False, default=0)
    color = Column(String(20), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class LeadRow(Base):
    """
    The leads table stores the CURRENT status.
    Think of it as a snapshot: where is this lead RIGHT NOW?
    """
    __tablename__ = "leads"

    id = Column(String(36), primary_key=True, default=new_uuid)

    # Contact data
    name = Column(String(100), nullable=False)
    phone = Column(String(20), nullable=False, unique=True, index=True)  # storage form
    region = Column(String(100), nullable=True)
    city = Column(String(100), nullable=True)
    source = Column(String(20), nullable=False, default="whatsapp")
    notes = Column(Text, nullable=True)

    # Pipeline - status_code is THE SINGLE SOURCE OF TRUTH
    status_code = Column(String(50), ForeignKey("status_definitions.code"), nullable=True)
    call_count = Column(Integer, nullable=False, default=0)
    last_contact_at = Column(DateTime(timezone=True), nullable=True)
    next_action = Column(String(100), nullable=True)
    next_action_at = Column(DateTime(timezone=True), nullable=True)
    appointment_date = Column(DateTime(timezone=True), nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    events = relationship("ContactEventRow", back_populates="lead", order_by="ContactEventRow.sequence")


class ContactEventRow(Base):
    """
    The Event Log - IMMUTABLE history.
    Never updated or deleted - append-only.
    """
    __tablename__ = "contact_events"
    __table_args__ = (
        Index("ix_contact_events_lead_sequence", "lead_id", "sequence", unique=True),
    )

    id = Column(String(36), primary_key=True, default=new_uuid)
    lead_id = Column(String(36), ForeignKey("leads.id"), nullable=False)
    sequence = Column(Integer, nullable=False)

    # What happened?
    type = Column(String(20), nullable=False)
    disposition = Column(String(30), nullable=True)
    note = Column(Text, nullable=True)
    from_status = Column(String(50), nullable=True)
    to_status = Column(String(50), nullable=True)

    # Extra data (duration, template, reason ...)
    payload = Column(JSON, nullable=True)

    # When?
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    lead = relationship("LeadRow", back_populates="events")
