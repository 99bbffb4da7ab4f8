import os
from pathlib import Path

from dotenv import load_dotenv

from storefront.services.url_utils import append_query_param

env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

MPESA_SANDBOX_URL = "https://sandbox.safaricom.co.ke"
MPESA_PRODUCTION_URL = "https://api.safaricom.co.ke"


class Settings:
    @staticmethod
    def _get_int(name: str, default: int) -> int:
        return int(os.getenv(name, str(default)))

    @staticmethod
    def _get_float(name: str, default: float) -> float:
        return float(os.getenv(name, str(default)))

    def _default_callback_url(self, path: str) -> str:
        # Gateways send no custom headers; the secret travels as ?token=.
        url = f"{self.BASE_URL.rstrip('/')}{path}"
        if self.PAYMENT_CALLBACK_SECRET:
            url = append_query_param(url, "token", self.PAYMENT_CALLBACK_SECRET)
        return url

    @property
    def BASE_URL(self) -> str:
        return os.getenv("BASE_URL", "http://localhost:8000")

    @property
    def DATABASE_URL(self) -> str:
        database_url = os.getenv("DATABASE_URL", "").strip()
        if not database_url:
            raise ValueError("DATABASE_URL is required")
        return database_url

    @property
    def DB_CONNECT_RETRIES(self) -> int:
        return self._get_int("DB_CONNECT_RETRIES", 5)

    @property
    def DB_CONNECT_RETRY_DELAY_SECONDS(self) -> int:
        return self._get_int("DB_CONNECT_RETRY_DELAY_SECONDS", 2)

    @property
    def JWT_SECRET(self) -> str:
        return os.getenv("JWT_SECRET", "change-me-in-production")

    @property
    def JWT_ALGORITHM(self) -> str:
        return os.getenv("JWT_ALGORITHM", "HS256")

    @property
    def CORS_ORIGINS(self) -> str:
        return os.getenv("CORS_ORIGINS", "http://localhost:3000")

    @property
    def PAYMENT_GATEWAY(self) -> str:
        return os.getenv("PAYMENT_GATEWAY", "mpesa").strip().lower()

    @property
    def GATEWAY_TIMEOUT_SECONDS(self) -> float:
        return self._get_float("GATEWAY_TIMEOUT_SECONDS", 8.0)

    @property
    def PAYMENT_CALLBACK_SECRET(self) -> str:
        return os.getenv("PAYMENT_CALLBACK_SECRET", "")

    @property
    def MPESA_ENV(self) -> str:
        return os.getenv("MPESA_ENV", "sandbox").strip().lower()

    @property
    def MPESA_BASE_URL(self) -> str:
        return MPESA_SANDBOX_URL if self.MPESA_ENV == "sandbox" else MPESA_PRODUCTION_URL

    @property
    def MPESA_CONSUMER_KEY(self) -> str:
        return os.getenv("MPESA_CONSUMER_KEY", "")

    @property
    def MPESA_CONSUMER_SECRET(self) -> str:
        return os.getenv("MPESA_CONSUMER_SECRET", "")

    @property
    def MPESA_PASSKEY(self) -> str:
        return os.getenv("MPESA_PASSKEY", "")

    @property
    def MPESA_SHORTCODE(self) -> str:
        return os.getenv("MPESA_SHORTCODE", "")

    @property
    def MPESA_CALLBACK_URL(self) -> str:
        return os.getenv("MPESA_CALLBACK_URL") or self._default_callback_url("/payment/mpesa/callback")

    @property
    def PAYHERO_BASE_URL(self) -> str:
        return os.getenv("PAYHERO_BASE_URL", "https://backend.payhero.co.ke/api/v2")

    @property
    def PAYHERO_USERNAME(self) -> str:
        return os.getenv("PAYHERO_USERNAME", "")

    @property
    def PAYHERO_PASSWORD(self) -> str:
        return os.getenv("PAYHERO_PASSWORD", "")

    @property
    def PAYHERO_CHANNEL_ID(self) -> str:
        return os.getenv("PAYHERO_CHANNEL_ID", "")

    @property
    def PAYHERO_PROVIDER(self) -> str:
        return os.getenv("PAYHERO_PROVIDER", "m-pesa")

    @property
    def PAYHERO_CALLBACK_URL(self) -> str:
        return os.getenv("PAYHERO_CALLBACK_URL") or self._default_callback_url("/payment/callback")


settings = Settings()

# Validate critical settings
if settings.JWT_SECRET == "change-me-in-production":
    import warnings
    warnings.warn("JWT_SECRET is using default value. Change it in production!", UserWarning)
