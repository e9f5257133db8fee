import logging
from contextlib import asynccontextmanager
from typing import Generator, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request, Response, status
from fastapi.exception_handlers import http_exception_handler
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from sqlalchemy.orm import Session

from twilio_inbox.config import Settings, get_settings
from twilio_inbox.decoder import InvalidBodyError, decode_body, request_url
from twilio_inbox.logging_utils import RequestLoggingMiddleware, log_webhook_data, setup_logging
from twilio_inbox.metrics import record_webhook_outcome, render_metrics
from twilio_inbox.params import CallbackParams
from twilio_inbox.pipeline import InboundCallback, WebhookError, check_request, process_callback
from twilio_inbox.schemas import (
    ContactResponse,
    ErrorResponse,
    HealthResponse,
    MessageResponse,
    StatsResponse,
)
from twilio_inbox.signature import SIGNATURE_HEADER
from twilio_inbox.storage import (
    check_db_health,
    get_contact,
    get_contact_messages,
    get_stats,
    init_db,
    list_contacts,
    open_session,
)


setup_logging(get_settings().LOG_LEVEL)
logger = logging.getLogger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
}

# Routed to the gate; any other method reaches method_not_allowed_handler
WEBHOOK_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.
    - Startup: create tables when a database is configured
    """
    settings = get_settings()
    if settings.store_configured:
        init_db(settings.DATABASE_URL)
    else:
        logger.warning("DATABASE_URL not set; webhook will answer 500 until configured")
    yield


app = FastAPI(
    title="Twilio Inbox",
    description="Receives Twilio WhatsApp callbacks and stores contacts and messages",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(RequestLoggingMiddleware)


def get_db(settings: Settings = Depends(get_settings)) -> Generator[Session, None, None]:
    """Session dependency for the read routes."""
    if not settings.store_configured:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="database not configured"
        )
    with open_session(settings.DATABASE_URL) as db:
        yield db


# =============================================================================
# Health Check Routes
# =============================================================================

@app.get("/health/live", response_model=HealthResponse)
async def health_live() -> HealthResponse:
    """
    Liveness probe - always returns 200 once the app is running.
    """
    return HealthResponse(status="ok")


@app.get("/health/ready", response_model=HealthResponse)
async def health_ready(response: Response, settings: Settings = Depends(get_settings)) -> HealthResponse:
    """
    Readiness probe - returns 200 only if DATABASE_URL is set, the
    database is reachable and its schema is applied. Otherwise 503.
    """
    if not settings.store_configured:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(status="not_ready", reason="DATABASE_URL not configured")

    if not check_db_health(settings.DATABASE_URL):
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not_ready",
            reason="Database not reachable or schema not applied"
        )

    return HealthResponse(status="ready")


# =============================================================================
# Webhook Route
# =============================================================================

def webhook_error(request: Request, error: WebhookError, params: Optional[CallbackParams]) -> JSONResponse:
    record_webhook_outcome(error.result)
    log_webhook_data(
        request=request,
        result=error.result,
        message_sid=params.optional("MessageSid") if params is not None else None,
    )
    return JSONResponse(
        status_code=error.status_code,
        content=ErrorResponse(error=error.error).model_dump(),
        headers=CORS_HEADERS,
    )


@app.exception_handler(StarletteHTTPException)
async def method_not_allowed_handler(request: Request, exc: StarletteHTTPException) -> Response:
    """Methods outside WEBHOOK_METHODS get the webhook's own 405, not the router's."""
    if exc.status_code == status.HTTP_405_METHOD_NOT_ALLOWED and request.url.path == "/webhook":
        return webhook_error(request, WebhookError(405, "Method not allowed", "method_not_allowed"), None)
    return await http_exception_handler(request, exc)


@app.api_route(
    "/webhook",
    methods=WEBHOOK_METHODS,
    response_class=PlainTextResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Invalid body or signature validation error"},
        403: {"model": ErrorResponse, "description": "Signature verification failed"},
        405: {"model": ErrorResponse, "description": "Method not allowed"},
        500: {"model": ErrorResponse, "description": "Not configured or storage failure"},
    },
)
async def twilio_webhook(request: Request, settings: Settings = Depends(get_settings)) -> Response:
    """
    Ingest an inbound Twilio WhatsApp callback.

    - OPTIONS answers the CORS pre-flight with no body
    - Validates X-Twilio-Signature when both the header and TWILIO_AUTH_TOKEN are set
    - Upserts the sender's contact, then stores the message against it

    Twilio only needs a 2xx; the body is a plain "OK".
    """
    if request.method == "OPTIONS":
        return Response(status_code=status.HTTP_200_OK, headers=CORS_HEADERS)

    params = None
    try:
        check_request(request.method, settings)

        try:
            params = await decode_body(request)
        except InvalidBodyError as e:
            raise WebhookError(400, "Invalid body", "invalid_body") from e

        callback = InboundCallback(
            url=request_url(request),
            params=params,
            signature=request.headers.get(SIGNATURE_HEADER),
        )

        with open_session(settings.DATABASE_URL) as db:
            outcome = process_callback(callback, settings, db)
            contact_id = outcome.contact.contact.id if outcome.contact.ok else None

    except WebhookError as e:
        return webhook_error(request, e, params)
    except Exception as e:
        logger.exception(f"Unhandled webhook error: {e}")
        return webhook_error(request, WebhookError(500, "Server error", "server_error"), params)

    record_webhook_outcome(outcome.result)
    log_webhook_data(
        request=request,
        result=outcome.result,
        message_sid=params.optional("MessageSid"),
        contact_id=contact_id,
    )

    if not outcome.ok:
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=ErrorResponse(error=outcome.error).model_dump(),
            headers=CORS_HEADERS,
        )

    logger.info(f"Callback stored for contact {contact_id}")
    return PlainTextResponse("OK", status_code=status.HTTP_200_OK, headers=CORS_HEADERS)


# =============================================================================
# Dashboard Read Routes
# =============================================================================

@app.get("/contacts", response_model=List[ContactResponse])
async def contacts(db: Session = Depends(get_db)) -> List[ContactResponse]:
    """Contacts ordered by most recent update first."""
    return [ContactResponse.model_validate(contact) for contact in list_contacts(db)]


@app.get(
    "/contacts/{contact_id}/messages",
    response_model=List[MessageResponse],
    responses={404: {"description": "Contact not found"}},
)
async def contact_messages(contact_id: str, db: Session = Depends(get_db)) -> List[MessageResponse]:
    """A contact's messages ordered oldest first."""
    if get_contact(db, contact_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="contact not found")
    return [MessageResponse.model_validate(message) for message in get_contact_messages(db, contact_id)]


@app.get("/stats", response_model=StatsResponse)
async def statistics(db: Session = Depends(get_db)) -> StatsResponse:
    """Contact and message counts."""
    return StatsResponse(**get_stats(db))


# =============================================================================
# Metrics Route
# =============================================================================

@app.get("/metrics")
async def metrics() -> Response:
    """Expose Prometheus-style metrics."""
    content, media_type = render_metrics()
    return Response(content=content, media_type=media_type)
