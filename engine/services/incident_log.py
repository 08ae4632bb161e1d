"""
engine/services/incident_log.py

Bounded, append-only incident history.
Oldest entries are evicted once capacity is reached. Entries are never
mutated except for the resolved flag and the action_taken annotation,
which only ever grows.
"""

import collections
from datetime import datetime
from typing import Iterator, Optional

import structlog

from engine.constants import INCIDENT_LOG_CAPACITY
from engine.schemas import Incident

logger = structlog.get_logger(__name__)


class IncidentLog:
    """Ring buffer of incidents, oldest first."""

    def __init__(self, capacity: int = INCIDENT_LOG_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self._entries: collections.deque[Incident] = collections.deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._entries.maxlen or 0

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[Incident]:
        return iter(list(self._entries))

    def append(self, incident: Incident) -> Optional[Incident]:
        """Add an incident; returns the evicted entry when the buffer was full."""
        evicted = None
        if len(self._entries) == self.capacity:
            evicted = self._entries[0]
            logger.info(
                "incident_evicted",
                incident_id=evicted.id,
                capacity=self.capacity,
            )
        self._entries.append(incident)
        return evicted

    def get(self, incident_id: str) -> Optional[Incident]:
        for incident in self._entries:
            if incident.id == incident_id:
                return incident
        return None

    def mark_resolved(self, incident_id: str) -> Optional[Incident]:
        incident = self.get(incident_id)
        if incident is None:
            logger.warning("incident_not_found", incident_id=incident_id)
            return None
        incident.resolved = True
        return incident

    def annotate(self, incident_id: str, action_taken: str) -> Optional[Incident]:
        """Append an action note; earlier notes are kept in order."""
        incident = self.get(incident_id)
        if incident is None:
            logger.warning("incident_not_found", incident_id=incident_id)
            return None
        if incident.action_taken:
            action_taken = f"{incident.action_taken}; {action_taken}"
        incident.action_taken = action_taken
        return incident

    def find_open(self, cause: str, since: Optional[datetime] = None) -> Optional[Incident]:
        """Most recent unresolved incident for a cause, optionally no older than since."""
        for incident in reversed(self._entries):
            if incident.resolved or incident.cause != cause:
                continue
            if since is not None and incident.timestamp < since:
                return None
            return incident
        return None

    def open_incidents(self) -> list[Incident]:
        return [incident for incident in self._entries if not incident.resolved]

    def recent(self, limit: int) -> list[Incident]:
        """Up to limit most recent incidents, oldest first."""
        if limit <= 0:
            return []
        return list(self._entries)[-limit:]
