"""Support ticket storage backed by a JSON snapshot."""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..chat.tickets import assess_priority
from ..errors import ConfigurationError
from ..models import (
    TICKET_CATEGORIES,
    TICKET_PRIORITIES,
    TICKET_STATUSES,
    Ticket,
    utcnow,
)
from .persistence import JsonSnapshot

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = ("title", "description", "priority", "status")


class TicketStore:
    """Create, query and update tickets; every change rewrites the snapshot."""

    def __init__(self, path: str | Path | None = None) -> None:
        self.snapshot = JsonSnapshot(path) if path is not None else None
        self._tickets: Dict[str, Ticket] = {}
        self._lock = threading.Lock()

    def load(self) -> int:
        """Replace the in-memory tickets with the persisted snapshot."""

        if self.snapshot is None:
            return 0
        tickets: Dict[str, Ticket] = {}
        for item in self.snapshot.load():
            try:
                ticket = Ticket.from_dict(item)
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping malformed ticket in %s: %s", self.snapshot.path, exc)
                continue
            tickets[ticket.id] = ticket
        with self._lock:
            self._tickets = tickets
        logger.info("Loaded %d tickets", len(tickets))
        return len(tickets)

    def _commit(self, tickets: Dict[str, Ticket]) -> None:
        """Persist ``tickets`` and publish them. Caller holds the lock."""

        if self.snapshot is not None:
            self.snapshot.save([ticket.to_dict() for ticket in tickets.values()])
        self._tickets = tickets

    def _new_id(self) -> str:
        while True:
            candidate = uuid.uuid4().hex[:6].upper()
            if candidate not in self._tickets:
                return candidate

    # ------------------------------------------------------------------
    def create(
        self,
        *,
        title: str,
        description: str,
        category: str,
        priority: Optional[str] = None,
    ) -> Ticket:
        if category not in TICKET_CATEGORIES:
            raise ConfigurationError(f"Invalid ticket category: {category!r}")
        if priority is None:
            priority = assess_priority(description)
        if priority not in TICKET_PRIORITIES:
            raise ConfigurationError(f"Invalid ticket priority: {priority!r}")

        with self._lock:
            now = utcnow()
            ticket = Ticket(
                id=self._new_id(),
                title=title,
                description=description,
                category=category,  # type: ignore[arg-type]
                priority=priority,  # type: ignore[arg-type]
                status="pending",
                created_at=now,
                updated_at=now,
            )
            self._commit({**self._tickets, ticket.id: ticket})
        logger.info("Created ticket #%s: %s", ticket.id, ticket.title)
        return ticket

    def get(self, ticket_id: str) -> Optional[Ticket]:
        return self._tickets.get(ticket_id)

    def list(
        self,
        *,
        status: Optional[str] = None,
        category: Optional[str] = None,
        priority: Optional[str] = None,
    ) -> List[Ticket]:
        """Return tickets matching every given filter, newest first."""

        tickets = list(reversed(self._tickets.values()))
        if status:
            tickets = [t for t in tickets if t.status == status]
        if category:
            tickets = [t for t in tickets if t.category == category]
        if priority:
            tickets = [t for t in tickets if t.priority == priority]
        return sorted(tickets, key=lambda t: t.created_at, reverse=True)

    def update(self, ticket_id: str, **changes: Any) -> Optional[Ticket]:
        changes = {key: value for key, value in changes.items() if value is not None}
        unknown = set(changes) - set(_UPDATABLE_FIELDS)
        if unknown:
            raise ConfigurationError(f"Cannot update ticket fields: {', '.join(sorted(unknown))}")
        if "status" in changes and changes["status"] not in TICKET_STATUSES:
            raise ConfigurationError(f"Invalid ticket status: {changes['status']!r}")
        if "priority" in changes and changes["priority"] not in TICKET_PRIORITIES:
            raise ConfigurationError(f"Invalid ticket priority: {changes['priority']!r}")

        with self._lock:
            previous = self._tickets.get(ticket_id)
            if previous is None:
                return None
            updated = replace(previous, updated_at=utcnow(), **changes)
            self._commit({**self._tickets, ticket_id: updated})
        logger.info("Updated ticket #%s", ticket_id)
        return updated

    def delete(self, ticket_id: str) -> bool:
        with self._lock:
            if ticket_id not in self._tickets:
                return False
            remaining = dict(self._tickets)
            del remaining[ticket_id]
            self._commit(remaining)
        logger.info("Deleted ticket #%s", ticket_id)
        return True

    def clear(self) -> None:
        with self._lock:
            self._commit({})

    def stats(self) -> Dict[str, Any]:
        tickets = list(self._tickets.values())

        def count(attr: str, values: tuple) -> Dict[str, int]:
            return {value: sum(1 for t in tickets if getattr(t, attr) == value) for value in values}

        return {
            "total": len(tickets),
            "byStatus": count("status", TICKET_STATUSES),
            "byCategory": count("category", TICKET_CATEGORIES),
            "byPriority": count("priority", TICKET_PRIORITIES),
        }

    def __len__(self) -> int:
        return len(self._tickets)
