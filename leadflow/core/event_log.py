"""
Contact Event Log
=================
Append-only view over one lead's history.
Oldest-first drives the engine's decisions; newest-first is what people read.
"""

from __future__ import annotations

from collections import Counter
from typing import Dict, Iterable, List, Optional

from leadflow.core.lead_states import CallDisposition, ContactEventType
from leadflow.core.models import ContactEvent


class ContactEventLog:
    def __init__(self, lead_id: str, events: Iterable[ContactEvent] = ()):
        self.lead_id = lead_id
        self._events: List[ContactEvent] = sorted(
            (e for e in events if e.lead_id == lead_id),
            key=lambda e: (e.sequence, e.created_at),
        )

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self):
        return iter(self._events)

    @property
    def next_sequence(self) -> int:
        return (self._events[-1].sequence if self._events else 0) + 1

    def append(self, event: ContactEvent) -> ContactEvent:
        if event.lead_id != self.lead_id:
            raise ValueError(f"Event for lead {event.lead_id} cannot go into log of {self.lead_id}")
        self._events.append(event)
        return event

    def oldest_first(self) -> List[ContactEvent]:
        return list(self._events)

    def newest_first(self) -> List[ContactEvent]:
        return list(reversed(self._events))

    def calls(self) -> List[ContactEvent]:
        return [e for e in self._events if e.type == ContactEventType.CALL]

    def trailing_disposition_streak(self, disposition: CallDisposition) -> int:
        """How many of the most recent calls in a row ended with `disposition`."""
        streak = 0
        for event in reversed(self.calls()):
            if event.disposition != disposition:
                break
            streak += 1
        return streak

    def disposition_counts(self) -> Dict[str, int]:
        counts = Counter(e.disposition.value for e in self.calls() if e.disposition)
        return dict(counts)

    def count_by_type(self) -> Dict[str, int]:
        return dict(Counter(e.type.value for e in self._events))

    def recent_activity(self, limit: int = 10) -> List[ContactEvent]:
        return self.newest_first()[:limit]

    def last_status_change(self) -> Optional[ContactEvent]:
        for event in reversed(self._events):
            if event.type == ContactEventType.STATUS_CHANGE:
                return event
        return None
