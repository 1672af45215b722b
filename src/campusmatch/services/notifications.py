"""Outbound notifications. Transport (email/SMS/push) lives outside this service."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, List, Protocol

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def match_found(self, match_id: str, lost_item_id: str, found_item_id: str, score: float) -> None: ...

    def claims_resolved(self, item_id: str, leading_claim_id: str | None, conflict: bool) -> None: ...

    def alert(self, subject: str, detail: str) -> None: ...


class LoggingNotifier:
    """Default notifier: writes events to the log."""

    def match_found(self, match_id: str, lost_item_id: str, found_item_id: str, score: float) -> None:
        logger.info("match %s found: lost=%s found=%s score=%.3f", match_id, lost_item_id, found_item_id, score)

    def claims_resolved(self, item_id: str, leading_claim_id: str | None, conflict: bool) -> None:
        logger.info("claims on %s resolved: leading=%s conflict=%s", item_id, leading_claim_id, conflict)

    def alert(self, subject: str, detail: str) -> None:
        logger.error("ALERT %s: %s", subject, detail)


@dataclass
class RecordingNotifier:
    """Keeps every event in memory; used by tests and dry runs."""

    events: List[tuple] = field(default_factory=list)

    def match_found(self, match_id: str, lost_item_id: str, found_item_id: str, score: float) -> None:
        self.events.append(("match_found", match_id, lost_item_id, found_item_id, score))

    def claims_resolved(self, item_id: str, leading_claim_id: str | None, conflict: bool) -> None:
        self.events.append(("claims_resolved", item_id, leading_claim_id, conflict))

    def alert(self, subject: str, detail: str) -> None:
        self.events.append(("alert", subject, detail))


def dispatch(notifier: Notifier, event: str, *args: Any) -> None:
    """Deliver after commit; a failed delivery never undoes the committed state."""
    try:
        getattr(notifier, event)(*args)
    except Exception:
        logger.exception("notification %s failed", event)
