import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ragchat.api.dependencies import close_pipeline_context
from ragchat.api.routes_chat import router as chat_router
from ragchat.api.routes_sessions import router as sessions_router
from ragchat.core.errors import (
    DeadlineExceeded,
    NoCandidates,
    RagError,
    RequestCancelled,
    ValidationError,
)

logger = logging.getLogger(__name__)

GENERIC_ERROR = "Unexpected error while processing your question. Please try again or refine your query."


def _configure_logging() -> None:
    # Read straight from the environment: logging comes up before Settings can validate
    load_dotenv()
    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Starting docs chat service...")
    yield
    logger.info("Shutting down docs chat service...")
    close_pipeline_context()


def create_app() -> FastAPI:
    app = FastAPI(title="Grounded Docs Chat", lifespan=lifespan)

    @app.exception_handler(RequestValidationError)
    async def malformed_body(request: Request, exc: RequestValidationError):
        return _error(status.HTTP_400_BAD_REQUEST, "Invalid JSON body")

    @app.exception_handler(ValidationError)
    async def invalid_question(request: Request, exc: ValidationError):
        return _error(status.HTTP_400_BAD_REQUEST, str(exc))

    @app.exception_handler(NoCandidates)
    async def no_candidates(request: Request, exc: NoCandidates):
        return _error(status.HTTP_404_NOT_FOUND, str(exc) or "No relevant content found to answer this question.")

    @app.exception_handler(DeadlineExceeded)
    async def deadline_exceeded(request: Request, exc: DeadlineExceeded):
        return _error(status.HTTP_504_GATEWAY_TIMEOUT, "The request took too long. Please try again.")

    @app.exception_handler(RequestCancelled)
    async def request_cancelled(request: Request, exc: RequestCancelled):
        # Nobody is listening; 499 only shows up in access logs
        return _error(499, "Client closed request")

    @app.exception_handler(RagError)
    async def upstream_failure(request: Request, exc: RagError):
        logger.error(f"Request to {request.url.path} failed: {exc!r}")
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, GENERIC_ERROR)

    @app.exception_handler(Exception)
    async def unexpected(request: Request, exc: Exception):
        # Cause stays in the logs; callers get a generic message.
        logger.error(f"Error handling {request.url.path}: {exc!r}", exc_info=exc)
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, GENERIC_ERROR)

    @app.get("/health", tags=["health"])
    def health():
        return {"status": "ok"}

    app.include_router(chat_router)
    app.include_router(sessions_router)
    return app


_configure_logging()
app = create_app()
