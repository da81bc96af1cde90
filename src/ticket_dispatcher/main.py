import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from ticket_dispatcher.config import get_settings
from ticket_dispatcher.services.dispatcher import dispatch_message
from ticket_dispatcher.services.github_client import GitHubClient
from ticket_dispatcher.services.logging_config import configure_logging
from ticket_dispatcher.services.object_store import ObjectStore
from ticket_dispatcher.services.retry import RetryPolicy
from ticket_dispatcher.webhooks.s3_handler import handle_s3_event

settings = get_settings()
configure_logging(settings.log_level)
logger = logging.getLogger(__name__)

github_client = GitHubClient(
    settings.github_token,
    retry_policy=RetryPolicy.from_settings(
        settings.api_retry_max_attempts,
        settings.api_retry_base_delay_seconds,
        settings.api_retry_max_delay_seconds,
    ),
)
object_store = ObjectStore(region_name=settings.aws_region)

app = FastAPI(title="Ticket Dispatcher", version="0.1.0")


@app.on_event("startup")
def startup() -> None:
    missing = settings.missing_required()
    if missing:
        raise RuntimeError(f"{', '.join(missing)} must be configured")
    if settings.github_owner_repo is None:
        logger.warning(
            "GITHUB_PROJECT not set, will not comment on issues, only logging metadata",
            extra={"event": "github_project_missing"},
        )
    logger.info("Application startup complete", extra={"event": "startup_complete"})


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok", "env": settings.app_env}


@app.post("/events/s3")
async def s3_event(request: Request) -> JSONResponse:
    logger.info("Received S3 event notification", extra={"event": "s3_event_received"})
    try:
        payload = await request.json()
    except Exception as exc:
        logger.warning("Invalid S3 event payload", extra={"event": "s3_event_invalid_json"})
        raise HTTPException(status_code=400, detail="invalid JSON payload") from exc
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="expected a JSON object")

    try:
        result = await handle_s3_event(payload, settings, object_store, github_client)
    except Exception as exc:
        logger.exception("S3 event processing error", extra={"event": "s3_event_processing_error"})
        raise HTTPException(status_code=500, detail="s3 event processing error") from exc

    logger.info(
        "S3 event processed",
        extra={"event": "s3_event_processed", "processed": result["processed"], "skipped": result["skipped"]},
    )
    return JSONResponse(result)


@app.post("/messages")
async def inbound_message(request: Request) -> JSONResponse:
    raw = await request.body()
    if not raw.strip():
        raise HTTPException(status_code=400, detail="empty message")

    try:
        result = await dispatch_message(raw, settings, github_client)
    except Exception as exc:
        logger.exception("Inbound message processing error", extra={"event": "inbound_message_processing_error"})
        raise HTTPException(status_code=500, detail="message processing error") from exc
    return JSONResponse(result.as_dict())
