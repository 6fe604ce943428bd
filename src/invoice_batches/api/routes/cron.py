"""Scheduled reconciliation trigger."""

import hmac
import logging

from fastapi import APIRouter, Depends, Header, HTTPException

from ...services import Services
from ..dependencies import get_services
from ..schemas import SweepResponse

logger = logging.getLogger(__name__)

router = APIRouter()


def require_api_key(
    authorization: str | None = Header(default=None),
    services: Services = Depends(get_services),
) -> None:
    expected = services.settings.server.api_secret_key
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing or invalid authorization header")
    token = authorization[len("Bearer "):]
    if not hmac.compare_digest(token.encode(), expected.encode()):
        raise HTTPException(status_code=401, detail="Invalid API key")


@router.api_route(
    "/reconcile",
    methods=["GET", "POST"],
    response_model=SweepResponse,
    dependencies=[Depends(require_api_key)],
)
def reconcile(services: Services = Depends(get_services)) -> SweepResponse:
    """Reconcile all active jobs, as run by the scheduler."""
    logger.info("Starting scheduled reconciliation")
    summary = services.reconciler.sweep()
    return SweepResponse.from_summary(summary)
