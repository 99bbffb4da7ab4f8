"""Shared types and HTTP plumbing for mobile-money gateway clients."""

import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Protocol

import httpx

from storefront.services.errors import CallbackPayloadError, GatewayError

logger = logging.getLogger(__name__)

STATE_PENDING = "pending"
STATE_COMPLETED = "completed"
STATE_FAILED = "failed"

JSON_HEADERS = {"Content-Type": "application/json", "Accept": "application/json"}


@dataclass(frozen=True)
class InitiationResult:
    """Gateway acknowledgment of a payment request."""

    checkout_request_id: str | None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class GatewayStatus:
    """Normalized result of a status query."""

    state: str
    reference: str
    amount: Decimal | None = None
    transaction_id: str | None = None
    message: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CallbackResult:
    """Normalized asynchronous callback from a gateway."""

    success: bool
    gateway_reference: str | None
    external_reference: str | None = None
    checkout_request_id: str | None = None
    provider_reference: str | None = None
    amount: Decimal | None = None
    message: str | None = None


class PaymentGatewayClient(Protocol):
    name: str

    def initiate_payment(
        self,
        amount: Decimal | int | float,
        phone_number: str,
        external_reference: str,
        redirect_url: str | None = None,
    ) -> InitiationResult: ...

    def query_status(self, correlation_reference: str) -> GatewayStatus: ...

    def parse_callback(self, body: Any) -> CallbackResult: ...


def to_decimal(value: Any, field_name: str) -> Decimal | None:
    """Parse a callback amount; ``None`` stays ``None``."""
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise CallbackPayloadError(f"{field_name} must be numeric") from exc


def _response_details(response: httpx.Response) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {"body": response.text[:500]}
    return data if isinstance(data, dict) else {"body": data}


def send_request(
    client: httpx.Client,
    method: str,
    url: str,
    error_cls: type[GatewayError],
    action: str,
    **kwargs: Any,
) -> dict[str, Any]:
    """Perform one gateway call and return its JSON body.

    Network failures, timeouts, non-2xx responses and non-object bodies are
    raised as ``error_cls``. Nothing is retried here.
    """
    try:
        response = client.request(method, url, **kwargs)
    except httpx.TimeoutException as exc:
        logger.error("%s timed out: %s", action, exc.__class__.__name__)
        raise error_cls(f"{action} timed out") from exc
    except httpx.RequestError as exc:
        logger.error("%s failed: %s", action, exc.__class__.__name__)
        raise error_cls(f"{action} failed: {exc.__class__.__name__}") from exc

    if not response.is_success:
        details = _response_details(response)
        logger.error("%s failed with HTTP %s: %s", action, response.status_code, details)
        raise error_cls(
            f"{action} failed with HTTP {response.status_code}",
            status_code=response.status_code,
            details=details,
        )

    try:
        data = response.json()
    except ValueError as exc:
        raise error_cls(f"{action} returned a non-JSON response", status_code=response.status_code) from exc
    if not isinstance(data, dict):
        raise error_cls(f"{action} returned an unexpected payload", status_code=response.status_code)
    return data
