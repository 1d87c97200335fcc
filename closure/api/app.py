"""FastAPI surface for the Closure orchestrator"""

from __future__ import annotations

from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from closure.api.routes.events import router as events_router
from closure.api.routes.health import router as health_router
from closure.config import APP_VERSION
from closure.observability.logging import get_logger
from closure.observability.telemetry import counter
from closure.orchestrator import TabOrchestrator
from closure.utils.redaction import redact

# Load environment variables from .env file
load_dotenv()

logger = get_logger(__name__)


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Sanitized 422: names the bad fields, never echoes validation internals."""
    logger.warning("Validation error on %s: %s", redact(str(request.url)), exc.errors())
    counter("api.validation_errors")

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "detail": "Invalid request format. Please check your request and try again.",
            "error_count": len(exc.errors()),
            "invalid_fields": [str(err["loc"][-1]) for err in exc.errors()],
        },
    )


def create_app(orchestrator: TabOrchestrator, *, start: bool = True) -> FastAPI:
    """
    Build the API around an orchestrator.

    With start=True the orchestrator's start() runs in the app lifespan
    (schema init, listeners, recurring timers).
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if start:
            await orchestrator.start()
        yield
        close = getattr(orchestrator.timers, "close", None)
        if callable(close):
            close()

    app = FastAPI(title="Closure Tab Orchestrator API", version=APP_VERSION, lifespan=lifespan)
    app.state.orchestrator = orchestrator
    app.add_exception_handler(RequestValidationError, validation_exception_handler)

    app.include_router(health_router)
    app.include_router(events_router)
    return app
