import logging
from contextlib import asynccontextmanager
from urllib.parse import parse_qsl, urlparse

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from storefront.api import cart, order, payment
from storefront.config import settings
from storefront.db_init import init_db
from storefront.services.payment_gateways import get_payment_gateways
from storefront.webhooks import payment_callback

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("storefront.startup")


def _is_localhost(host: str | None) -> bool:
    return host in {"localhost", "127.0.0.1"}


def _is_http_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in {"http", "https"} and bool(parsed.hostname)


def _get_cors_origins(cors_raw: str) -> list[str]:
    return [origin.strip() for origin in cors_raw.split(",") if origin.strip()]


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
    return f"scheme={scheme}, host={host}, port={port}, database={db_name}"


def _validate_payment_config_for_runtime() -> None:
    """Fail fast when the active gateway cannot be built or cannot be called back."""
    errors = []
    warnings = []

    gateways = get_payment_gateways()
    gateway_name = settings.PAYMENT_GATEWAY
    gateway = gateways.get(gateway_name)
    if gateway is None:
        errors.append(
            f"PAYMENT_GATEWAY '{gateway_name}' is not supported (expected one of: {', '.join(gateways)})."
        )
    elif not gateway.enabled:
        errors.append(f"PAYMENT_GATEWAY is '{gateway_name}' but its credentials are not configured.")

    callback_url = settings.MPESA_CALLBACK_URL if gateway_name == "mpesa" else settings.PAYHERO_CALLBACK_URL
    if not _is_http_url(callback_url):
        errors.append("Payment callback URL must be an absolute http(s) URL.")
    elif _is_localhost(urlparse(callback_url).hostname):
        warnings.append("Payment callback URL points to localhost; the gateway will not be able to reach it.")

    if gateway_name == "mpesa" and settings.MPESA_ENV not in {"sandbox", "production"}:
        errors.append("MPESA_ENV must be 'sandbox' or 'production'.")

    if not settings.PAYMENT_CALLBACK_SECRET:
        warnings.append("PAYMENT_CALLBACK_SECRET is not set; payment callbacks are not authenticated.")
    elif _is_http_url(callback_url):
        callback_token = dict(parse_qsl(urlparse(callback_url).query)).get("token")
        if callback_token != settings.PAYMENT_CALLBACK_SECRET:
            errors.append(
                "Payment callback URL must carry token=<PAYMENT_CALLBACK_SECRET> when the secret is set."
            )

    if warnings:
        logger.warning("Startup payment configuration warnings: %s", " | ".join(warnings))

    if errors:
        raise RuntimeError("Startup payment configuration validation failed: " + " | ".join(errors))


@asynccontextmanager
async def lifespan(app: FastAPI):
    database_url = "<unavailable>"
    logger.info("Application startup initiated.")
    try:
        database_url = settings.DATABASE_URL
        logger.info("DATABASE_URL diagnostics at startup: %s", _db_url_diagnostics(database_url))
        _validate_database_url_for_runtime(database_url)
        _validate_payment_config_for_runtime()
        init_db()
    except Exception as exc:
        logger.exception("Startup failed: %s", str(exc))
        raise
    logger.info("Application startup completed successfully.")
    yield


app = FastAPI(
    title="Storefront Payments API",
    description=(
        "Orders, cart and mobile-money (M-Pesa STK push / PayHero) payments. "
        "Cart and order endpoints require a bearer token issued by the storefront auth provider."
    ),
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Cart", "description": "The current user's cart (requires auth)."},
        {"name": "Orders", "description": "Place and list orders (requires auth)."},
        {"name": "Payments", "description": "Initiate STK push and poll its status."},
        {"name": "Webhooks", "description": "Called by M-Pesa and PayHero."},
    ],
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_get_cors_origins(settings.CORS_ORIGINS),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(cart.router, prefix="/api/cart", tags=["Cart"])
app.include_router(order.router, prefix="/api/orders", tags=["Orders"])
app.include_router(payment.router, prefix="/payment", tags=["Payments"])
app.include_router(payment_callback.router, prefix="/payment", tags=["Webhooks"])


@app.get("/")
def root():
    return {"status": "ok", "service": "Storefront Payments API"}


@app.get("/health")
def health():
    return {"status": "ok"}
