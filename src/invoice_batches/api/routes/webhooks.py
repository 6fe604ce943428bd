"""Push notifications from the batch service.

Requests are signed: ``webhook-signature`` carries one or more space
separated ``v1,<base64>`` entries, each an HMAC-SHA256 over
``f"{timestamp}.{body}"`` with the shared secret.
"""

import base64
import hashlib
import hmac
import json
import logging
import time

from fastapi import APIRouter, Depends, HTTPException, Request
from starlette.concurrency import run_in_threadpool

from ...domain.models import RequestCounts
from ...services import Services
from ..dependencies import get_services
from ..schemas import WebhookResponse

logger = logging.getLogger(__name__)

router = APIRouter()

EVENT_PREFIX = "job."
MAX_TIMESTAMP_AGE = 300


def compute_signature(secret: str, timestamp: str, body: bytes) -> str:
    message = timestamp.encode() + b"." + body
    digest = hmac.new(secret.encode(), message, hashlib.sha256).digest()
    return base64.b64encode(digest).decode()


def verify_signature(
    secret: str,
    timestamp: str | None,
    signature_header: str | None,
    body: bytes,
    now: float | None = None,
) -> bool:
    """Check the webhook signature and reject stale timestamps."""
    if not timestamp or not signature_header:
        return False
    try:
        sent_at = int(timestamp)
    except ValueError:
        return False
    if abs((now if now is not None else time.time()) - sent_at) > MAX_TIMESTAMP_AGE:
        return False

    expected = compute_signature(secret, timestamp, body)
    for entry in signature_header.split():
        version, _, signature = entry.partition(",")
        if version == "v1" and hmac.compare_digest(signature, expected):
            return True
    return False


@router.post("/batch", response_model=WebhookResponse)
async def batch_event(request: Request, services: Services = Depends(get_services)) -> WebhookResponse:
    body = await request.body()
    secret = services.settings.server.webhook_secret

    if not verify_signature(
        secret,
        request.headers.get("webhook-timestamp"),
        request.headers.get("webhook-signature"),
        body,
    ):
        logger.warning("Rejected webhook with invalid signature")
        raise HTTPException(status_code=400, detail="Invalid signature")

    try:
        event = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise HTTPException(status_code=400, detail="Invalid JSON") from None
    if not isinstance(event, dict):
        raise HTTPException(status_code=400, detail="Invalid JSON")

    event_type = str(event.get("type") or "")
    if not event_type.startswith(EVENT_PREFIX):
        logger.info(f"Ignoring webhook event {event_type!r}")
        return WebhookResponse(status="ignored")

    data = event.get("data") if isinstance(event.get("data"), dict) else {}
    job_id = data.get("id")
    if not job_id:
        raise HTTPException(status_code=400, detail="Missing job id")

    phase = event_type[len(EVENT_PREFIX):]
    counts = RequestCounts.from_payload(data.get("request_counts") or data.get("requestCounts"))
    job = await run_in_threadpool(services.reconciler.apply_push_event, job_id, phase, counts)
    if job is None:
        return WebhookResponse(status="ignored", job_id=job_id)

    logger.info(f"Webhook {event_type} applied to job {job_id}: {job.status.value}")
    return WebhookResponse(status="ok", job_id=job_id, job_status=job.status.value)
