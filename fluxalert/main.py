"""fluxalert - FastAPI application forwarding controller events to Alertmanager."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import uvicorn
from fastapi import FastAPI, HTTPException, status
from fastapi.responses import JSONResponse

from fluxalert.config import Settings, get_settings
from fluxalert.errors import ConfigurationError, PostMessageError, RelabelError
from fluxalert.models.event import Event
from fluxalert.notifiers.alertmanager import (
    AlertmanagerNotifier,
    title_case,
    title_case_preserve,
)
from fluxalert.transport import load_cert_pool

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Global notifier instance
notifier: AlertmanagerNotifier | None = None


def create_notifier(settings: Settings) -> AlertmanagerNotifier:
    """Create the Alertmanager notifier from settings."""
    relabel_config = ""
    if settings.relabel_config_path:
        relabel_config = settings.relabel_config_path.read_text(encoding="utf-8")

    cert_pool = None
    if settings.ca_file_path:
        cert_pool = load_cert_pool(settings.ca_file_path)

    return AlertmanagerNotifier(
        settings.alertmanager_address,
        proxy_url=settings.proxy_url or None,
        cert_pool=cert_pool,
        relabel_config=relabel_config,
        title_caser=title_case_preserve if settings.title_preserve_case else title_case,
        timeout=settings.request_timeout,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    global notifier

    settings = get_settings()

    # Configure logging level
    logging.getLogger().setLevel(settings.log_level.upper())

    try:
        notifier = create_notifier(settings)
        logger.info(f"Forwarding events to {len(notifier.endpoints)} endpoint(s)")
    except FileNotFoundError as e:
        logger.error(f"{e}. Check RELABEL_CONFIG and CA_FILE environment variables.")
        notifier = None
    except ConfigurationError as e:
        logger.error(f"Invalid notifier configuration: {e}")
        notifier = None
    except Exception as e:
        logger.exception(f"Failed to create notifier: {e}")
        notifier = None

    logger.info("fluxalert started")

    yield

    notifier = None
    logger.info("fluxalert stopped")


app = FastAPI(
    title="fluxalert",
    description="Forwards reconciliation events to Alertmanager webhooks",
    version="0.1.0",
    lifespan=lifespan,
)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy"}


@app.post("/events")
async def receive_event(event: Event) -> JSONResponse:
    """Receive a controller event and forward it as an alert."""
    logger.info(
        f"Received event {event.reason} for "
        f"{event.involved_object.kind}/{event.involved_object.namespace}/{event.involved_object.name}"
    )

    if not notifier:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Notifier not configured. Check ALERTMANAGER_ADDRESS.",
        )

    try:
        alert = await notifier.post(event)
    except PostMessageError as e:
        logger.error(str(e))
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content={
                "status": "error",
                "message": "Failed to deliver alert to one or more endpoints",
                "errors": [str(err) for err in e.errors],
            },
        )
    except RelabelError as e:
        logger.error(str(e))
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"status": "error", "message": str(e), "errors": [str(e)]},
        )

    if alert is None:
        return JSONResponse(
            status_code=status.HTTP_200_OK,
            content={"status": "skipped", "message": "Commit status update ignored"},
        )

    return JSONResponse(
        status_code=status.HTTP_200_OK,
        content={
            "status": "ok",
            "message": "Alert delivered",
            "alertname": alert.name,
            "endpoints": len(notifier.endpoints),
        },
    )


def run() -> None:
    """Run the application using uvicorn."""
    settings = get_settings()
    uvicorn.run(
        "fluxalert.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        reload=False,
    )


if __name__ == "__main__":
    run()
