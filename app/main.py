"""
Prompt Queue Service - FastAPI Application Entry Point.

Accepts prompts for asynchronous completion and serves chat history.
"""
import asyncio
import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.api.chats import router as chats_router
from app.api.health import router as health_router
from app.api.prompt_queue import router as prompt_queue_router
from app.core.config import get_settings
from app.core.logging import get_safe_logger, setup_logging
from app.services.job_manager import PromptQueueManager


# Initialize logging first
setup_logging()
logger = get_safe_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan handler.
    Starts the queue worker on startup and stops it on shutdown.
    """
    settings = get_settings()
    logger.info("Starting Prompt Queue Service", model=settings.default_model)

    queue_manager = PromptQueueManager.get_instance()
    queue_manager._shutting_down = False
    worker_task = asyncio.create_task(queue_manager.start_worker())

    yield

    queue_manager._shutting_down = True
    worker_task.cancel()
    try:
        await worker_task
    except asyncio.CancelledError:
        pass

    logger.info("Shutting down Prompt Queue Service")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Prompt Queue Service",
        description="Asynchronous prompt queue with pollable job status",
        version="0.1.0",
        docs_url="/docs" if settings.service_env == "dev" else None,
        redoc_url="/redoc" if settings.service_env == "dev" else None,
        openapi_url="/openapi.json" if settings.service_env == "dev" else None,
        lifespan=lifespan
    )

    # Register routes
    app.include_router(health_router)
    app.include_router(prompt_queue_router)
    app.include_router(chats_router)

    # Register exception handlers
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    return app


async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError
) -> JSONResponse:
    """
    Handle Pydantic validation errors.
    Validation details may echo prompt text, so they are not returned.
    """
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))

    logger.error(
        "Request validation failed",
        error_code="BAD_REQUEST",
        request_id=request_id,
        path=request.url.path,
        status_code=400
    )

    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"success": False, "error": "Invalid request format"}
    )


async def http_exception_handler(
    request: Request,
    exc: HTTPException
) -> JSONResponse:
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))

    logger.error(
        "HTTP exception",
        request_id=request_id,
        path=request.url.path,
        status_code=exc.status_code
    )

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "error": exc.detail if isinstance(exc.detail, str) else "Request failed",
        }
    )


async def generic_exception_handler(
    request: Request,
    exc: Exception
) -> JSONResponse:
    """
    Handle unexpected exceptions.
    Never log exception details.
    """
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))

    logger.error(
        "Unexpected error",
        error_code="INTERNAL_ERROR",
        request_id=request_id,
        exception_class=type(exc).__name__,
        status_code=500
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"success": False, "error": "Internal server error"}
    )


# Create the application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "app.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.service_env == "dev"
    )
