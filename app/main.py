import logging
from contextlib import asynccontextmanager
from urllib.parse import urlparse

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api import checkout, payments, reconciliation
from app.config import settings
from app.db_init import init_db
from app.models.database import SessionLocal
from app.services.momo_client import MomoClient
from app.services.notifications import build_notifier
from app.services.rate_limit import RateLimiter
from app.services.reconciliation import ReconciliationEngine, ReconciliationScheduler
from app.services.time_utils import utcnow
from app.webhooks import momo_callback

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("app.startup")


def _is_http_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in {"http", "https"} and bool(parsed.hostname)


def _get_cors_origins(cors_raw: str) -> list[str]:
    return [origin.strip() for origin in cors_raw.split(",") if origin.strip()]


def _is_production_target() -> bool:
    return settings.MOMO_TARGET_ENVIRONMENT != "sandbox"


def _validate_database_url_for_runtime(database_url: str) -> None:
    parsed = urlparse(database_url)
    scheme = parsed.scheme
    postgres_schemes = {"postgres", "postgresql", "postgresql+psycopg"}

    if not scheme:
        raise RuntimeError("DATABASE_URL is missing URL scheme (expected postgresql:// or postgresql+psycopg://).")
    if scheme == "sqlite":
        return
    if scheme not in postgres_schemes:
        raise RuntimeError(
            f"DATABASE_URL has unsupported scheme '{scheme}' "
            "(expected postgresql:// or postgresql+psycopg://)."
        )
    if not parsed.hostname:
        raise RuntimeError("DATABASE_URL is missing host.")
    if not parsed.path.lstrip("/"):
        raise RuntimeError("DATABASE_URL is missing database name in path.")


def _db_url_diagnostics(database_url: str) -> str:
    parsed = urlparse(database_url)
    host = parsed.hostname or "<missing>"
    port = parsed.port or "<missing>"
    db_name = parsed.path.lstrip("/") or "<missing>"
    scheme = parsed.scheme or "<missing>"
    query = parsed.query or "<empty>"

    tips = []
    if scheme in {"postgres", "postgresql"}:
        tips.append("URL scheme is fine; app normalizes it to postgresql+psycopg internally.")
    if scheme != "sqlite" and "sslmode" not in query:
        tips.append("No sslmode in URL query; external managed DBs often require sslmode=require.")
    if not tips:
        tips.append("URL structure looks valid; check network access, DB credentials, and DB service status.")

    return (
        f"scheme={scheme}, host={host}, port={port}, database={db_name}, query={query}; "
        f"tips={' | '.join(tips)}"
    )


def _validate_required_env_for_runtime() -> None:
    errors = []
    warnings = []
    is_production = _is_production_target()

    jwt_secret = settings.JWT_SECRET.strip()
    if not jwt_secret:
        errors.append("JWT_SECRET is required.")
    elif is_production and jwt_secret == "change-me-in-production":
        errors.append(
            "JWT_SECRET uses insecure default value with a production MoMo target. "
            "Set JWT_SECRET."
        )

    missing_momo = [
        name
        for name in ("MOMO_COLLECTION_USER_ID", "MOMO_COLLECTION_API_KEY", "MOMO_SUBSCRIPTION_KEY")
        if not getattr(settings, name)
    ]
    if missing_momo:
        warnings.append(f"MoMo credentials missing: {', '.join(missing_momo)}; collections will fail.")

    if not settings.MOMO_CALLBACK_SECRET:
        warnings.append("MOMO_CALLBACK_SECRET is not set; signed webhooks cannot be verified.")
    if settings.MOMO_WEBHOOK_ALLOW_UNSIGNED:
        if is_production:
            errors.append("MOMO_WEBHOOK_ALLOW_UNSIGNED must not be enabled with a production MoMo target.")
        else:
            warnings.append("MOMO_WEBHOOK_ALLOW_UNSIGNED is enabled; unsigned webhooks will be accepted.")

    if not _is_http_url(settings.MOMO_API_BASE_URL):
        errors.append("MOMO_API_BASE_URL must be an absolute http(s) URL.")

    if settings.PAYMENT_TIMEOUT_MINUTES <= 0:
        errors.append("PAYMENT_TIMEOUT_MINUTES must be positive.")
    if settings.RECONCILE_INTERVAL_MINUTES <= 0:
        errors.append("RECONCILE_INTERVAL_MINUTES must be positive.")
    if settings.WEBHOOK_RATE_LIMIT_PER_MINUTE <= 0:
        errors.append("WEBHOOK_RATE_LIMIT_PER_MINUTE must be positive.")

    origins = _get_cors_origins(settings.CORS_ORIGINS)
    invalid_origins = [origin for origin in origins if not _is_http_url(origin)]
    if invalid_origins:
        errors.append(f"CORS_ORIGINS contains invalid URL(s): {', '.join(invalid_origins)}")

    if warnings:
        logger.warning("Startup environment warnings: %s", " | ".join(warnings))

    if errors:
        raise RuntimeError("Startup environment validation failed: " + " | ".join(errors))


def build_payment_services(app: FastAPI) -> ReconciliationEngine:
    """Create the process-wide payment collaborators and attach them to app.state."""
    client = MomoClient.from_settings(settings)
    notifier = build_notifier(settings)
    engine = ReconciliationEngine(
        SessionLocal,
        client,
        notifier=notifier,
        timeout_minutes=settings.PAYMENT_TIMEOUT_MINUTES,
        interval_minutes=settings.RECONCILE_INTERVAL_MINUTES,
    )
    app.state.momo_client = client
    app.state.notifier = notifier
    app.state.reconciliation_engine = engine
    app.state.webhook_rate_limiter = RateLimiter(settings.WEBHOOK_RATE_LIMIT_PER_MINUTE, window_seconds=60)
    return engine


@asynccontextmanager
async def lifespan(app: FastAPI):
    database_url = "<unavailable>"
    logger.info("Application startup initiated.")
    try:
        database_url = settings.DATABASE_URL
        logger.info("DATABASE_URL diagnostics at startup: %s", _db_url_diagnostics(database_url))
        _validate_database_url_for_runtime(database_url)
        _validate_required_env_for_runtime()
        init_db()
    except Exception as exc:
        diagnostics = (
            _db_url_diagnostics(database_url)
            if database_url != "<unavailable>"
            else "DATABASE_URL unavailable (missing or unreadable)."
        )
        logger.exception(
            "Database initialization failed: %s. DATABASE_URL diagnostics: %s",
            str(exc),
            diagnostics,
        )
        raise

    engine = build_payment_services(app)
    scheduler = ReconciliationScheduler(
        engine,
        interval_seconds=settings.RECONCILE_INTERVAL_MINUTES * 60,
        startup_delay_seconds=settings.RECONCILE_STARTUP_DELAY_SECONDS,
    )
    if settings.RECONCILE_ENABLED:
        scheduler.start()
    else:
        logger.info("Reconciliation scheduler disabled via RECONCILE_ENABLED")
    logger.info("Application startup completed successfully.")
    try:
        yield
    finally:
        await scheduler.stop()


app = FastAPI(
    title="MoMo Storefront API",
    description=(
        "Checkout, MTN MoMo payment callbacks and payment reconciliation for the Telegram storefront. "
        "Admin endpoints require a bearer token issued by the dashboard auth service."
    ),
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Checkout", "description": "Order creation and MoMo collection requests (bot)."},
        {"name": "Payments", "description": "Payment and order read views (admin)."},
        {"name": "Reconciliation", "description": "Reconciliation job status and manual trigger (admin)."},
        {"name": "Webhooks", "description": "Called by MTN MoMo."},
    ],
)


def custom_openapi():
    if app.openapi_schema:
        return app.openapi_schema
    from fastapi.openapi.utils import get_openapi

    openapi_schema = get_openapi(
        title=app.title,
        version=app.version,
        description=app.description,
        routes=app.routes,
    )
    openapi_schema.setdefault("components", {})["securitySchemes"] = {
        **openapi_schema.get("components", {}).get("securitySchemes", {}),
        "bearerAuth": {
            "type": "http",
            "scheme": "bearer",
            "bearerFormat": "JWT",
            "description": "JWT issued by the dashboard auth service (role admin/staff/bot)",
        },
    }
    app.openapi_schema = openapi_schema
    return app.openapi_schema


app.openapi = custom_openapi

app.add_middleware(
    CORSMiddleware,
    allow_origins=_get_cors_origins(settings.CORS_ORIGINS),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(checkout.router, prefix="/api/checkout", tags=["Checkout"])
app.include_router(payments.router, prefix="/api/payments", tags=["Payments"])
app.include_router(payments.orders_router, prefix="/api/orders", tags=["Payments"])
app.include_router(reconciliation.router, prefix="/api/reconciliation", tags=["Reconciliation"])
app.include_router(momo_callback.router, prefix="/api/webhooks", tags=["Webhooks"])


@app.get("/")
def root():
    return {"status": "ok", "service": "MoMo Storefront API"}


@app.get("/health")
def health():
    return {"status": "ok"}


def _configured(value) -> str:
    return "configured" if value else "not configured"


@app.get("/healthz")
def healthz():
    return {
        "status": "healthy",
        "timestamp": utcnow().isoformat(),
        "services": {
            "mtnMomo": _configured(settings.MOMO_COLLECTION_USER_ID and settings.MOMO_SUBSCRIPTION_KEY),
            "telegram": _configured(settings.TELEGRAM_BOT_TOKEN),
            "webhookSignature": _configured(settings.MOMO_CALLBACK_SECRET),
        },
    }
