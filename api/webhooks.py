"""Provider webhook ingress."""

import logging
from collections.abc import Callable

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from config import settings
from database import get_db, get_session_local
from services.webhook_service import WebhookService, WebhookSignatureError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


def get_webhook_service() -> WebhookService:
    """Get the webhook service (dependency for injection in tests)."""
    return WebhookService(webhook_key=settings.XERO_WEBHOOK_KEY)


def get_session_factory() -> Callable[[], Session]:
    """Session factory for background processing, which outlives the request session."""
    return get_session_local()


@router.post("/xero")
async def xero_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    webhook_service: WebhookService = Depends(get_webhook_service),
    session_factory: Callable[[], Session] = Depends(get_session_factory),
):
    """Receive Xero webhook deliveries.

    The signature is checked against the raw body before anything else.
    Valid events are stored and acknowledged immediately; syncing happens
    in a background task. Only the body read runs on the event loop; the
    database work goes to the threadpool.
    """
    raw_body = await request.body()

    if not webhook_service.is_enabled:
        logger.warning("Xero webhook received but XERO_WEBHOOK_KEY is not set; ignoring")
        return JSONResponse(status_code=200, content={"status": "ignored"})

    try:
        webhook_service.verify_signature(raw_body, request.headers.get("x-xero-signature"))
    except WebhookSignatureError as e:
        logger.warning("Rejected Xero webhook: %s", e)
        return JSONResponse(status_code=401, content={"error": "Invalid signature"})

    try:
        events = webhook_service.parse_payload(raw_body)
    except ValueError as e:
        logger.warning("Malformed Xero webhook: %s", e)
        return JSONResponse(status_code=400, content={"error": "Malformed payload"})

    if not events:
        # Intent-to-receive validation
        return JSONResponse(status_code=200, content={"status": "ok", "events": 0})

    event_ids = await run_in_threadpool(_store_events, webhook_service, db, events, raw_body)

    background_tasks.add_task(webhook_service.process_events, session_factory, event_ids)
    return JSONResponse(status_code=200, content={"status": "ok", "events": len(event_ids)})


def _store_events(
    webhook_service: WebhookService, db: Session, events: list[dict], raw_body: bytes
) -> list[str]:
    """Persist parsed events and commit; runs in the threadpool."""
    stored = webhook_service.store_events(db, events, raw_body)
    db.commit()
    return [e.id for e in stored]
