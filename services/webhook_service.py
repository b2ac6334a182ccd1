"""Xero webhook verification, storage and processing.

Deliveries are verified and stored synchronously so the request can be
acknowledged within Xero's deadline; each stored event is then processed
in the background by mapping its Xero tenant id back to a connection and
running an incremental sync.
"""

import base64
import hashlib
import hmac
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from integrations.exceptions import SyncInProgressError
from integrations.parsing_utils import parse_iso_datetime
from models import Connection, OAuthToken, WebhookEvent
from models.connection import ACTIVE
from models.oauth_token import TOKEN_ACTIVE
from services.sync_service import SyncOptions, SyncService

logger = logging.getLogger(__name__)

PROVIDER_ID = "xero"

SUPPORTED_EVENT_CATEGORIES = frozenset({"BANKTRANSACTION", "INVOICE", "PAYMENT", "CONTACT", "ACCOUNT"})
SUPPORTED_EVENT_TYPES = frozenset({"CREATE", "UPDATE", "DELETE"})


@dataclass(frozen=True)
class EventSyncConfig:
    """What an event category should trigger."""

    sync_accounts: bool
    sync_transactions: bool

    @property
    def needs_sync(self) -> bool:
        return self.sync_accounts or self.sync_transactions


EVENT_SYNC_CONFIG = {
    "BANKTRANSACTION": EventSyncConfig(sync_accounts=False, sync_transactions=True),
    # Invoices and payments can change bank reconciliation
    "INVOICE": EventSyncConfig(sync_accounts=False, sync_transactions=True),
    "PAYMENT": EventSyncConfig(sync_accounts=False, sync_transactions=True),
    "ACCOUNT": EventSyncConfig(sync_accounts=True, sync_transactions=False),
    "CONTACT": EventSyncConfig(sync_accounts=False, sync_transactions=False),
}


class WebhookSignatureError(Exception):
    """Signature header missing or not matching the body."""

    pass


def compute_signature(raw_body: bytes, webhook_key: str) -> str:
    """Base64 HMAC-SHA256 of the raw body."""
    digest = hmac.new(webhook_key.encode("utf-8"), raw_body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


class WebhookService:
    """Service for provider webhook deliveries."""

    def __init__(
        self,
        webhook_key: Optional[str] = None,
        sync_service: Optional[SyncService] = None,
    ):
        self.webhook_key = webhook_key
        self._sync_service = sync_service

    @property
    def sync_service(self) -> SyncService:
        if self._sync_service is None:
            self._sync_service = SyncService()
        return self._sync_service

    @property
    def is_enabled(self) -> bool:
        return bool(self.webhook_key)

    def verify_signature(self, raw_body: bytes, signature: Optional[str]) -> None:
        """Check ``x-xero-signature`` against the body in constant time.

        Raises:
            WebhookSignatureError: If the header is missing or does not match.
        """
        if not signature:
            raise WebhookSignatureError("Missing webhook signature")
        expected = compute_signature(raw_body, self.webhook_key or "")
        if not hmac.compare_digest(expected.encode("ascii"), signature.encode("ascii", "ignore")):
            raise WebhookSignatureError("Invalid webhook signature")

    @staticmethod
    def parse_payload(raw_body: bytes) -> list[dict]:
        """Return the events of a delivery.

        An intent-to-receive delivery has an empty ``events`` list.

        Raises:
            ValueError: If the body is not a JSON object with an events list.
        """
        try:
            payload = json.loads(raw_body or b"{}")
        except json.JSONDecodeError as e:
            raise ValueError(f"Webhook body is not valid JSON: {e}") from e
        if not isinstance(payload, dict):
            raise ValueError("Webhook body must be a JSON object")
        events = payload.get("events") or []
        if not isinstance(events, list):
            raise ValueError("Webhook 'events' must be a list")
        return [e for e in events if isinstance(e, dict)]

    @staticmethod
    def store_events(db: Session, events: list[dict], raw_body: bytes) -> list[WebhookEvent]:
        """Persist each event for asynchronous processing."""
        raw_text = raw_body.decode("utf-8", errors="replace")
        stored = []
        for event in events:
            row = WebhookEvent(
                provider=PROVIDER_ID,
                event_type=event.get("eventType") or "UNKNOWN",
                event_category=event.get("eventCategory"),
                resource_id=event.get("resourceId"),
                external_tenant_id=event.get("tenantId"),
                payload=event,
                raw_payload=raw_text,
            )
            db.add(row)
            stored.append(row)
        db.flush()
        logger.info("Stored %d webhook events", len(stored))
        return stored

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    @staticmethod
    def find_connection(db: Session, xero_tenant_id: str) -> Optional[Connection]:
        """Find the connection whose active token belongs to a Xero organisation."""
        tokens = (
            db.query(OAuthToken)
            .filter_by(provider_id=PROVIDER_ID, status=TOKEN_ACTIVE)
            .all()
        )
        for token in tokens:
            metadata = token.provider_metadata or {}
            if xero_tenant_id in (metadata.get("xero_tenant_id"), metadata.get("xeroTenantId")):
                return db.query(Connection).filter_by(id=token.connection_id).first()
        return None

    def process_event(self, db: Session, event_id: str) -> str:
        """Process one stored event and mark it processed.

        Commits its own work.

        Returns:
            A short note describing the action taken
        """
        event = db.query(WebhookEvent).filter_by(id=event_id).first()
        if event is None:
            logger.warning("Webhook event %s not found", event_id)
            return "event not found"
        if event.processed:
            return "already processed"

        error = None
        try:
            note = self._handle(db, event)
        except SyncInProgressError as e:
            note = "sync already in progress"
            logger.info("Webhook event %s: %s", event.id, e)
        except Exception as e:
            logger.error("Webhook event %s failed: %s", event.id, e, exc_info=True)
            db.rollback()
            event = db.query(WebhookEvent).filter_by(id=event_id).one()
            note = "error"
            error = str(e)[:1000]

        event.processed = True
        event.processed_at = datetime.now(timezone.utc)
        event.processing_error = error
        db.commit()
        logger.info("Webhook event %s processed: %s", event.id, note)
        return note

    def _handle(self, db: Session, event: WebhookEvent) -> str:
        if event.event_category not in SUPPORTED_EVENT_CATEGORIES:
            return f"ignored: unsupported event category {event.event_category}"
        if event.event_type not in SUPPORTED_EVENT_TYPES:
            return f"ignored: unsupported event type {event.event_type}"
        if not event.external_tenant_id:
            return "ignored: event has no tenant id"

        connection = self.find_connection(db, event.external_tenant_id)
        if connection is None:
            return f"ignored: no connection for Xero tenant {event.external_tenant_id}"
        event.connection_id = connection.id
        event.tenant_id = connection.tenant_id
        if connection.status != ACTIVE:
            return f"ignored: connection is {connection.status}"

        config = EVENT_SYNC_CONFIG[event.event_category]
        if not config.needs_sync:
            return f"ignored: {event.event_category} events do not require a sync"

        payload = event.payload or {}
        options = SyncOptions(
            sync_accounts=config.sync_accounts,
            sync_transactions=config.sync_transactions,
            force_sync=True,
            modified_since=parse_iso_datetime(payload.get("eventDateUtc")),
        )
        db.flush()
        logger.info(
            "Webhook %s/%s: syncing connection %s (accounts=%s, transactions=%s)",
            event.event_category, event.event_type, connection.id,
            config.sync_accounts, config.sync_transactions,
        )
        self.sync_service.perform_sync(db, connection.id, connection.tenant_id, options)
        return "sync triggered"

    def process_events(self, session_factory: Callable[[], Session], event_ids: list[str]) -> None:
        """Background entry point: process events in a session of their own."""
        db = session_factory()
        try:
            for event_id in event_ids:
                self.process_event(db, event_id)
        finally:
            db.close()
