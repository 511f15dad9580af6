"""Destinations for fulfillment events emitted by the scheduler."""

import hashlib
import hmac
import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from covenant.core.config import settings
from covenant.core.errors import EventSinkError
from covenant.repositories.fulfillment_repository import FulfillmentRepository
from covenant.schemas.fulfillment import FulfillmentEvent

logger = logging.getLogger(__name__)

FULFILLMENT_EVENT_TYPE = "subscription.fulfillment_due"


def generate_hmac_signature(payload_bytes: bytes, secret: str) -> str:
    """Generate HMAC-SHA256 signature for a webhook payload.

    Args:
        payload_bytes: The raw payload bytes to sign.
        secret: The secret key for HMAC generation.

    Returns:
        Hex-encoded HMAC-SHA256 signature.
    """
    return hmac.new(
        secret.encode("utf-8"),
        payload_bytes,
        hashlib.sha256,
    ).hexdigest()


class EventSink(ABC):
    """Receives fulfillment events. Delivery and retries belong to the sink."""

    @abstractmethod
    def emit(self, event: FulfillmentEvent) -> None:
        """Deliver *event*; raise EventSinkError on failure."""
        ...  # pragma: no cover


class FulfillmentRecorder(EventSink):
    """Writes each event to the fulfillments history table."""

    def __init__(self, db: Session):
        self.db = db
        self.repo = FulfillmentRepository(db)

    def emit(self, event: FulfillmentEvent) -> None:
        try:
            self.repo.create(event)
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise EventSinkError(
                f"Could not record fulfillment for {event.subscription_id}: {exc}"
            ) from exc


class WebhookEventSink(EventSink):
    """POSTs each event as signed JSON to a single configured URL."""

    def __init__(self, url: str, secret: str, timeout: float = 10.0):
        self.url = url
        self.secret = secret
        self.timeout = timeout

    def emit(self, event: FulfillmentEvent) -> None:
        payload = {"webhook_type": FULFILLMENT_EVENT_TYPE, "object": event.model_dump(mode="json")}
        payload_bytes = json.dumps(payload).encode("utf-8")
        headers = {
            "Content-Type": "application/json",
            "X-Covenant-Signature": generate_hmac_signature(payload_bytes, self.secret),
            "X-Covenant-Signature-Algorithm": "hmac",
            "X-Covenant-Event-Type": FULFILLMENT_EVENT_TYPE,
        }
        try:
            with httpx.Client(timeout=self.timeout) as client:
                resp = client.post(self.url, content=payload_bytes, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning("Fulfillment webhook failed for %s: %s", event.subscription_id, exc)
            raise EventSinkError(f"Webhook delivery failed: {exc}") from exc

        if not 200 <= resp.status_code < 300:
            raise EventSinkError(
                f"Webhook endpoint returned {resp.status_code} for {event.subscription_id}"
            )


class CompositeEventSink(EventSink):
    """Emits to every sink, then reports all failures together."""

    def __init__(self, sinks: Sequence[EventSink]):
        self.sinks = list(sinks)

    def emit(self, event: FulfillmentEvent) -> None:
        errors: list[str] = []
        for sink in self.sinks:
            try:
                sink.emit(event)
            except EventSinkError as exc:
                errors.append(f"{type(sink).__name__}: {exc}")
        if errors:
            raise EventSinkError("; ".join(errors))


def build_event_sink(db: Session) -> EventSink:
    """Default sink: fulfillment history, plus the webhook when configured."""
    sinks: list[EventSink] = [FulfillmentRecorder(db)]
    if settings.webhook_enabled:
        sinks.append(WebhookEventSink(settings.FULFILLMENT_WEBHOOK_URL, settings.webhook_secret))
    return CompositeEventSink(sinks)
