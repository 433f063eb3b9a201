"""
=====================================================
Support Line - Main FastAPI Application
=====================================================
"""

import sys
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from loguru import logger

from config.settings import get_settings
from services.conversation.orchestrator import (
    CallOrchestrator,
    WebhookEvent,
    build_orchestrator,
    get_orchestrator,
    set_orchestrator,
)
from services.dashboard.dashboard_routes import router as dashboard_router
from services.security import validate_twilio_signature
from services.storage import create_call_store
from services.telephony.twilio_service import TwiMLBuilder


# Get settings
settings = get_settings()

# Configure logger
logger.remove()  # Remove default handler
logger.add(
    settings.log_file,
    rotation="100 MB",
    retention=10,
    level=settings.log_level,
    backtrace=True,
    diagnose=settings.debug
)
logger.add(sys.stdout, level=settings.log_level)

TWIML_MEDIA_TYPE = "text/xml"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan management"""
    logger.info(f"{settings.app_name} starting up ({settings.environment})...")

    store = await create_call_store(settings)
    orchestrator = build_orchestrator(store, settings)
    await orchestrator.directory.seed_roster()
    set_orchestrator(orchestrator)

    yield

    logger.info(f"{settings.app_name} shutting down...")
    set_orchestrator(None)
    await store.close()


# Create FastAPI app
app = FastAPI(
    title="Support Line",
    description="Phone support line: AI conversation, escalation to human specialists, grade dictation",
    version="1.0.0",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(dashboard_router)


def twiml_response(body: str) -> Response:
    return Response(content=body, status_code=200, media_type=TWIML_MEDIA_TYPE)


# =====================================================
# HEALTH CHECK
# =====================================================

@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "service": "support-line",
        "version": "1.0.0",
        "environment": settings.environment
    }


# =====================================================
# TWILIO WEBHOOK (TwiML)
# =====================================================

@app.post(settings.webhook_path, dependencies=[Depends(validate_twilio_signature)])
async def twilio_webhook(
    request: Request,
    orchestrator: CallOrchestrator = Depends(get_orchestrator)
):
    """
    Voice webhook for every call event

    Always answers 200 with a TwiML body; the body is empty only for
    call status acknowledgements.
    """
    try:
        form = await request.form()
        event = WebhookEvent.from_form(form)
    except Exception as e:
        logger.error(f"Webhook: Could not read form data: {e}")
        return twiml_response(orchestrator.twiml.technical_difficulty())

    logger.info(
        f"Webhook: CallSid={event.call_sid} CallStatus={event.call_status} "
        f"speech={'yes' if event.speech_result else 'no'}"
    )

    reply = await orchestrator.handle_event(event)
    return twiml_response(reply.body)


# =====================================================
# ERROR HANDLERS
# =====================================================

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler"""
    logger.error(f"Unhandled exception on {request.url.path}: {exc}")
    if request.url.path == settings.webhook_path:
        # Twilio must always get a playable document
        return twiml_response(TwiMLBuilder(voice=settings.tts_voice).fatal_error())
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error"}
    )


# =====================================================
# MAIN ENTRY POINT (for development)
# =====================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        log_level=settings.log_level.lower()
    )
