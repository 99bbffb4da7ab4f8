from dataclasses import dataclass
from typing import Callable

from storefront.config import settings
from storefront.services.errors import GatewayError
from storefront.services.gateway_base import PaymentGatewayClient
from storefront.services.mpesa_service import MpesaClient
from storefront.services.payhero_service import PayheroClient


@dataclass(frozen=True)
class PaymentGateway:
    name: str
    create_client: Callable[[], PaymentGatewayClient]
    enabled: bool


def get_payment_gateways() -> dict[str, PaymentGateway]:
    return {
        "mpesa": PaymentGateway(
            name="mpesa",
            create_client=MpesaClient.from_settings,
            enabled=bool(
                settings.MPESA_CONSUMER_KEY
                and settings.MPESA_CONSUMER_SECRET
                and settings.MPESA_SHORTCODE
                and settings.MPESA_PASSKEY
            ),
        ),
        "payhero": PaymentGateway(
            name="payhero",
            create_client=PayheroClient.from_settings,
            enabled=bool(
                settings.PAYHERO_USERNAME and settings.PAYHERO_PASSWORD and settings.PAYHERO_CHANNEL_ID
            ),
        ),
    }


def get_enabled_gateways() -> list[str]:
    return [name for name, gateway in get_payment_gateways().items() if gateway.enabled]


def get_payment_gateway(name: str | None = None) -> PaymentGatewayClient:
    """Build a fresh client for ``name`` (defaults to ``PAYMENT_GATEWAY``)."""
    gateway_name = (name or settings.PAYMENT_GATEWAY).strip().lower()
    gateway = get_payment_gateways().get(gateway_name)
    if gateway is None:
        raise GatewayError(f"Unsupported payment gateway: {gateway_name}")
    return gateway.create_client()
