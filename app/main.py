import logging

from fastapi import Depends, FastAPI
from sqlalchemy.orm import Session

from app.api.admin import router as admin_router
from app.api.agent import router as agent_router
from app.core.config import settings
from app.db.deps import get_db
from app.middleware.correlation_id import CorrelationIdFilter, CorrelationIdMiddleware

LOG_FORMAT = "%(asctime)s %(levelname)s [%(correlation_id)s] %(name)s: %(message)s"


def configure_logging() -> None:
    """Root logging with the request correlation id on every line."""
    handler = logging.StreamHandler()
    handler.addFilter(CorrelationIdFilter())
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root = logging.getLogger()
    if not any(isinstance(f, CorrelationIdFilter) for h in root.handlers for f in h.filters):
        root.addHandler(handler)
    root.setLevel(logging.INFO)


configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title="SMS Booking Agent")

app.add_middleware(CorrelationIdMiddleware)


@app.on_event("startup")
async def startup_event():
    """Run startup checks and validation."""
    if settings.app_env == "production":
        production_errors = []

        if not settings.admin_api_key:
            production_errors.append(
                "ADMIN_API_KEY is required in production. "
                "Set ADMIN_API_KEY environment variable with a strong random key."
            )
        if settings.ai_provider == "openai" and not settings.openai_api_key:
            production_errors.append(
                "OPENAI_API_KEY is required when AI_PROVIDER=openai. "
                "Set OPENAI_API_KEY or use AI_PROVIDER=heuristic."
            )

        if production_errors:
            error_message = (
                "Production environment validation failed:\n\n"
                + "\n".join(f"  - {error}" for error in production_errors)
                + "\n\nThe application cannot start in production with these settings."
            )
            logger.error(error_message)
            raise RuntimeError(error_message)

    # Log enabled integrations summary (no secrets)
    logger.info(
        "Startup: Configuration loaded - "
        f"Environment: {settings.app_env}, "
        f"AI provider: {settings.ai_provider}, "
        f"OpenAI key set: {bool(settings.openai_api_key)}, "
        f"Copy locale: {settings.copy_locale}"
    )


@app.get("/health")
def health():
    """
    Health check endpoint.

    Returns 200 immediately - used for basic health checks.
    """
    return {
        "ok": True,
        "ai_provider": settings.ai_provider,
        "llm_enabled": settings.ai_provider == "openai" and bool(settings.openai_api_key),
    }


@app.get("/ready")
def ready(db: Session = Depends(get_db)):
    """
    Readiness check endpoint - verifies database connectivity.

    Returns 200 if database is accessible, 503 if not.
    """
    from sqlalchemy import text

    try:
        db.execute(text("SELECT 1"))
        return {"ok": True, "database": "connected"}
    except Exception as e:
        logger.error(f"Readiness check failed: {e}")
        from fastapi import status
        from fastapi.responses import JSONResponse

        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"ok": False, "database": "disconnected", "error": str(e)},
        )


app.include_router(agent_router, prefix="/agent", tags=["agent"])
app.include_router(admin_router, prefix="/admin", tags=["admin"])
