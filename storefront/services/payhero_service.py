"""PayHero client (STK push through a PayHero payment channel)."""

import logging
from decimal import Decimal
from typing import Any

import httpx

from storefront.config import settings
from storefront.services.errors import (
    CallbackPayloadError,
    GatewayError,
    GatewayInitiationError,
    GatewayStatusError,
)
from storefront.services.gateway_base import (
    JSON_HEADERS,
    STATE_COMPLETED,
    STATE_FAILED,
    STATE_PENDING,
    CallbackResult,
    GatewayStatus,
    InitiationResult,
    send_request,
    to_decimal,
)
from storefront.services.mpesa_service import to_whole_amount
from storefront.services.phone import normalize_phone_number

logger = logging.getLogger(__name__)

STATUS_STATES = {
    "SUCCESS": STATE_COMPLETED,
    "COMPLETED": STATE_COMPLETED,
    "QUEUED": STATE_PENDING,
    "PENDING": STATE_PENDING,
    "FAILED": STATE_FAILED,
    "CANCELLED": STATE_FAILED,
}


class PayheroClient:
    name = "payhero"

    def __init__(
        self,
        username: str,
        password: str,
        channel_id: str,
        base_url: str,
        callback_url: str,
        provider: str = "m-pesa",
        timeout: float = 8.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.username = username
        self.password = password
        self.channel_id = channel_id
        self.base_url = base_url.rstrip("/")
        self.callback_url = callback_url
        self.provider = provider
        self.timeout = timeout
        self.transport = transport

    @classmethod
    def from_settings(cls, transport: httpx.BaseTransport | None = None) -> "PayheroClient":
        if not settings.PAYHERO_USERNAME or not settings.PAYHERO_PASSWORD:
            raise GatewayError("PAYHERO_USERNAME and PAYHERO_PASSWORD are not set")
        if not settings.PAYHERO_CHANNEL_ID:
            raise GatewayError("PAYHERO_CHANNEL_ID is not set")
        return cls(
            username=settings.PAYHERO_USERNAME,
            password=settings.PAYHERO_PASSWORD,
            channel_id=settings.PAYHERO_CHANNEL_ID,
            base_url=settings.PAYHERO_BASE_URL,
            callback_url=settings.PAYHERO_CALLBACK_URL,
            provider=settings.PAYHERO_PROVIDER,
            timeout=settings.GATEWAY_TIMEOUT_SECONDS,
            transport=transport,
        )

    def _client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self.transport,
            auth=httpx.BasicAuth(self.username, self.password),
            headers=JSON_HEADERS,
        )

    def _channel_id(self) -> int | str:
        return int(self.channel_id) if str(self.channel_id).isdigit() else self.channel_id

    def initiate_payment(
        self,
        amount: Decimal | int | float,
        phone_number: str,
        external_reference: str,
        redirect_url: str | None = None,
    ) -> InitiationResult:
        payload = {
            "amount": to_whole_amount(amount),
            "phone_number": normalize_phone_number(phone_number),
            "channel_id": self._channel_id(),
            "provider": self.provider,
            "external_reference": external_reference,
            "callback_url": self.callback_url,
            "description": f"Payment for order {external_reference}",
        }
        if redirect_url:
            payload["redirect_url"] = redirect_url

        with self._client() as client:
            data = send_request(
                client, "POST", "/payments", GatewayInitiationError, "PayHero payment request", json=payload
            )

        if data.get("success") is False:
            raise GatewayInitiationError(
                data.get("message") or "PayHero rejected the payment request", details=data
            )
        reference = data.get("reference") or data.get("CheckoutRequestID")
        if not reference:
            raise GatewayInitiationError("PayHero response had no reference", details=data)

        logger.info("PayHero payment request accepted: reference=%s", reference)
        return InitiationResult(checkout_request_id=reference, raw=data)

    def query_status(self, correlation_reference: str) -> GatewayStatus:
        with self._client() as client:
            data = send_request(
                client,
                "GET",
                "/transaction-status",
                GatewayStatusError,
                "PayHero status query",
                params={"reference": correlation_reference},
            )

        raw_status = str(data.get("status") or "").upper()
        state = STATUS_STATES.get(raw_status)
        if state is None:
            raise GatewayStatusError(f"PayHero returned unknown status {raw_status or '<empty>'}", details=data)

        try:
            amount = to_decimal(data.get("amount"), "amount")
        except CallbackPayloadError as exc:
            raise GatewayStatusError("PayHero returned a non-numeric amount", details=data) from exc

        return GatewayStatus(
            state=state,
            reference=correlation_reference,
            amount=amount,
            transaction_id=data.get("provider_reference") or None,
            message=data.get("message") or None,
            raw=data,
        )

    @staticmethod
    def parse_callback(body: Any) -> CallbackResult:
        """Normalize a PayHero callback.

        Two shapes are accepted: the payment-button payload (``paymentSuccess``,
        ``reference``, ``user_reference``) and the API payload wrapping a
        ``response`` object.
        """
        if not isinstance(body, dict):
            raise CallbackPayloadError("Callback body must be a JSON object")
        if isinstance(body.get("response"), dict):
            return PayheroClient._parse_api_callback(body["response"])
        return PayheroClient._parse_button_callback(body)

    @staticmethod
    def _parse_button_callback(body: dict[str, Any]) -> CallbackResult:
        payment_success = body.get("paymentSuccess")
        reference = body.get("reference")
        user_reference = body.get("user_reference")
        if payment_success is None or not reference or not user_reference:
            raise CallbackPayloadError("Missing paymentSuccess, reference or user_reference")
        if not isinstance(payment_success, bool):
            raise CallbackPayloadError("paymentSuccess must be a boolean")

        return CallbackResult(
            success=payment_success,
            gateway_reference=str(reference),
            external_reference=str(user_reference),
            provider_reference=body.get("providerReference") or None,
            amount=to_decimal(body.get("amount"), "amount"),
            message=body.get("message"),
        )

    @staticmethod
    def _parse_api_callback(response: dict[str, Any]) -> CallbackResult:
        external_reference = response.get("ExternalReference")
        checkout_request_id = response.get("CheckoutRequestID")
        result_code = response.get("ResultCode")
        if not external_reference or not checkout_request_id or result_code is None:
            raise CallbackPayloadError("Missing ExternalReference, CheckoutRequestID or ResultCode")
        try:
            success = int(result_code) == 0
        except (TypeError, ValueError) as exc:
            raise CallbackPayloadError("ResultCode must be an integer") from exc

        return CallbackResult(
            success=success,
            gateway_reference=str(checkout_request_id),
            external_reference=str(external_reference),
            checkout_request_id=str(checkout_request_id),
            provider_reference=response.get("MpesaReceiptNumber") or None,
            amount=to_decimal(response.get("Amount"), "Amount"),
            message=response.get("ResultDesc"),
        )
