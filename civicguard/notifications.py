"""Post-commit notification delivery.

Mutations write events into the store's ``outbox`` table inside their own
transaction. After commit the :class:`NotificationDispatcher` drains pending
events to the configured sinks. Delivery is at-least-once; a failing sink
leaves the event pending for the next drain and never affects the operation
that produced it.

Webhook payloads are signed with HMAC-SHA256 and posted with ``httpx``.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional, Protocol

import httpx

if TYPE_CHECKING:
    from civicguard.config import NotificationConfig
    from civicguard.store.sqlite_store import RecordStore

logger = logging.getLogger(__name__)

# All event types the engine emits
EVENTS = [
    "issue.status_changed",
    "issue.flagged",
    "issue.auto_hidden",
    "issue.reviewed",
    "issue.marked_for_removal",
]


@dataclass
class OutboxEvent:
    """An event recorded alongside the mutation that produced it."""

    id: str
    event: str
    payload: dict[str, Any] = field(default_factory=dict)
    created_at: str = ""
    delivered_at: Optional[str] = None
    attempts: int = 0
    last_error: str = ""


class NotificationSink(Protocol):
    def send(self, event: OutboxEvent) -> None:
        """Deliver one event; raise on failure."""


class LogSink:
    """Writes every event to the application log."""

    def send(self, event: OutboxEvent) -> None:
        logger.info("notification %s %s", event.event, json.dumps(event.payload, default=str))


class WebhookSink:
    """Posts events as signed JSON to a single URL."""

    def __init__(
        self,
        url: str,
        events: Optional[list[str]] = None,
        secret: str = "",
        timeout: float = 10.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        invalid = [e for e in events or [] if e not in EVENTS]
        if invalid:
            raise ValueError(f"Invalid events: {invalid}. Valid: {EVENTS}")
        self.url = url
        self.events = list(events or [])
        self._secret = secret
        self._client = client or httpx.Client(timeout=timeout)

    @staticmethod
    def compute_signature(payload_bytes: bytes, secret: str) -> str:
        """Compute HMAC-SHA256 signature for a payload."""
        mac = hmac.new(secret.encode("utf-8"), payload_bytes, hashlib.sha256)
        return f"sha256={mac.hexdigest()}"

    def accepts(self, event: str) -> bool:
        return not self.events or event in self.events

    def send(self, event: OutboxEvent) -> None:
        if not self.accepts(event.event):
            return
        body = json.dumps(
            {"id": event.id, "event": event.event, "created_at": event.created_at, "payload": event.payload},
            default=str,
        ).encode("utf-8")
        headers = {
            "Content-Type": "application/json",
            "X-CivicGuard-Event": event.event,
            "X-CivicGuard-Delivery": event.id,
        }
        if self._secret:
            headers["X-CivicGuard-Signature"] = self.compute_signature(body, self._secret)

        start = time.monotonic()
        resp = self._client.post(self.url, content=body, headers=headers)
        resp.raise_for_status()
        logger.debug(
            "webhook %s delivered %s in %dms",
            self.url,
            event.event,
            int((time.monotonic() - start) * 1000),
        )

    def close(self) -> None:
        self._client.close()


class NotificationDispatcher:
    """Drains the outbox to a list of sinks."""

    def __init__(self, store: RecordStore, sinks: Optional[list[NotificationSink]] = None) -> None:
        self._store = store
        self._sinks: list[NotificationSink] = list(sinks or [])
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, store: RecordStore, config: NotificationConfig) -> NotificationDispatcher:
        sinks: list[NotificationSink] = []
        if config.log_events:
            sinks.append(LogSink())
        for hook in config.webhooks:
            sinks.append(
                WebhookSink(hook.url, events=hook.events, secret=hook.secret, timeout=hook.timeout_seconds)
            )
        return cls(store, sinks)

    @property
    def sinks(self) -> list[NotificationSink]:
        return list(self._sinks)

    def add_sink(self, sink: NotificationSink) -> None:
        self._sinks.append(sink)

    def drain(self, limit: int = 100) -> int:
        """Deliver pending events; returns how many were fully delivered."""
        delivered = 0
        with self._lock:
            for event in self._store.pending_events(limit):
                error = self._deliver(event)
                if error:
                    self._store.mark_event_failed(event.id, error)
                else:
                    self._store.mark_event_delivered(event.id)
                    delivered += 1
        return delivered

    def drain_after_commit(self) -> None:
        """Drain once, logging instead of raising.

        Called right after a mutation commits; the mutation has already
        succeeded and must be reported as such.
        """
        try:
            self.drain()
        except Exception:
            logger.exception("Notification dispatch failed; events stay queued")

    def _deliver(self, event: OutboxEvent) -> str:
        errors = []
        for sink in self._sinks:
            try:
                sink.send(event)
            except Exception as exc:
                logger.warning(
                    "Notification sink %s failed for %s (%s): %s",
                    type(sink).__name__,
                    event.event,
                    event.id,
                    exc,
                )
                errors.append(f"{type(sink).__name__}: {exc}")
        return "; ".join(errors)
