"""Error taxonomy shared by the parser, the pipeline and the status engine."""

from __future__ import annotations

from typing import List, Optional


class LeadflowError(Exception):
    """Base class for expected, caller-facing failures."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(LeadflowError):
    """Raised when lead fields are missing or malformed."""

    def __init__(self, errors: List[str]):
        super().__init__("; ".join(errors) or "Invalid lead")
        self.errors = list(errors)


class LeadNotFound(LeadflowError):
    def __init__(self, lead_id: str):
        super().__init__(f"Lead {lead_id} not found")
        self.lead_id = lead_id


class DuplicateLead(LeadflowError):
    """Raised when a lead with the same storage-form phone already exists."""

    def __init__(self, phone: str, existing_id: str):
        super().__init__(f"Lead with phone {phone} already exists")
        self.phone = phone
        self.existing_id = existing_id


class InvalidTransition(LeadflowError):
    """Raised when a transition names a status outside the active set."""

    def __init__(self, message: str, status_code: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code


class ParseFailure(LeadflowError):
    """Raised when contact text cannot be parsed at all (empty input)."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason
