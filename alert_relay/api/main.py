"""
Alert Relay - Main API Server

FastAPI application receiving Prisma Cloud webhooks and relaying each alert
to ClickUp, Teams and SharePoint.
"""

import logging
import sys
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request, Security
from fastapi.concurrency import run_in_threadpool
from fastapi.security import APIKeyHeader
from starlette.status import (
    HTTP_400_BAD_REQUEST,
    HTTP_401_UNAUTHORIZED,
    HTTP_403_FORBIDDEN,
)

from alert_relay.agents import dispatch
from alert_relay.config import Settings, get_settings
from alert_relay.integrations.base import SinkSet
from alert_relay.integrations.sinks import build_sink_set
from alert_relay.models.dispatch import AcknowledgementResponse, Destination, OutcomeKind

SERVICE_NAME = "Prisma Cloud Alert Relay"
SERVICE_VERSION = "1.3.0"

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    """Log to stdout, and also append to LOG_FILE when one is configured."""
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if settings.log_file:
        handlers.append(logging.FileHandler(settings.log_file, mode="a", encoding="utf-8"))

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=handlers,
        force=True,
    )


@lru_cache
def get_sink_set() -> SinkSet:
    """Sinks are built once per process and shared by every request."""
    return build_sink_set(get_settings())


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(settings)

    for sink_name, state in settings.integration_status().items():
        if state == "partial":
            logger.warning("startup.integration_partial", extra={"sink": sink_name})
        else:
            logger.info("startup.integration", extra={"sink": sink_name, "state": state})
    if not settings.allowed_ip_list:
        logger.warning("startup.no_ip_allowlist")

    get_sink_set()
    yield


app = FastAPI(
    title="Alert Relay API",
    description="Relays Prisma Cloud alerts to ClickUp, Teams and SharePoint",
    version=SERVICE_VERSION,
    lifespan=lifespan,
)


# ============================================================================
# Request guards
# ============================================================================

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


def require_allowed_ip(request: Request, settings: Settings = Depends(get_settings)) -> None:
    """Reject clients outside ALLOWED_IPS; an empty allowlist admits everyone."""
    allowed = settings.allowed_ip_list
    if not allowed:
        return

    client_ip = request.client.host if request.client else ""
    if client_ip not in allowed:
        logger.warning("webhook.ip_denied", extra={"client_ip": client_ip})
        raise HTTPException(status_code=HTTP_403_FORBIDDEN, detail="Access denied: IP not allowed")


def require_api_key(
    api_key: Optional[str] = Security(api_key_header),
    settings: Settings = Depends(get_settings),
) -> str:
    if not api_key or api_key != settings.webhook_api_key:
        logger.warning("webhook.unauthorized")
        raise HTTPException(
            status_code=HTTP_401_UNAUTHORIZED,
            detail="Unauthorized: Invalid or missing API key",
        )
    return api_key


def get_destination(x_type: Optional[str] = Header(None)) -> Destination:
    """Map the X-Type header to a destination; anything else is a caller error."""
    try:
        return Destination(x_type)
    except ValueError:
        logger.debug("webhook.unknown_type", extra={"x_type": x_type})
        raise HTTPException(status_code=HTTP_400_BAD_REQUEST, detail="Invalid or missing type header")


# ============================================================================
# API Endpoints
# ============================================================================

@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


@app.get("/")
async def root():
    return {"service": SERVICE_NAME, "version": SERVICE_VERSION, "status": "running"}


@app.post("/webhook", dependencies=[Depends(require_allowed_ip), Depends(require_api_key)])
async def receive_webhook(
    request: Request,
    destination: Destination = Depends(get_destination),
    sinks: SinkSet = Depends(get_sink_set),
) -> Dict[str, Any]:
    """
    Receive a Prisma Cloud webhook.

    The body is a single alert object or an array of alerts. Returns the
    per-request aggregate: task ids created, and any per-alert sink errors
    (status "partial_success"). A connectivity test gets a short
    acknowledgement instead.
    """
    body = await request.body()
    logger.info(
        "webhook.received",
        extra={
            "client_ip": request.client.host if request.client else None,
            "destination": destination.value,
            "size": len(body),
        },
    )

    # Sink calls block on the network; keep them off the event loop.
    outcome = await run_in_threadpool(dispatch.process_webhook, body, destination, sinks)

    if outcome.kind == OutcomeKind.REJECTED:
        raise HTTPException(status_code=HTTP_400_BAD_REQUEST, detail=outcome.error)

    if outcome.kind == OutcomeKind.TEST_ACKNOWLEDGED:
        return AcknowledgementResponse().model_dump()

    return outcome.batch.to_response().model_dump(exclude_none=True)


# ============================================================================
# Main Entry Point
# ============================================================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=get_settings().port)
