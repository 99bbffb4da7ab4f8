"""Safaricom Daraja (M-Pesa Express / STK push) client."""

import base64
import logging
from datetime import datetime, timedelta, timezone
from decimal import ROUND_CEILING, Decimal
from typing import Any

import httpx

from storefront.config import MPESA_SANDBOX_URL, settings
from storefront.services.errors import (
    CallbackPayloadError,
    GatewayError,
    GatewayInitiationError,
    GatewayStatusError,
    PaymentValidationError,
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
from storefront.services.phone import normalize_phone_number

logger = logging.getLogger(__name__)

TOKEN_PATH = "/oauth/v1/generate"
STK_PUSH_PATH = "/mpesa/stkpush/v1/processrequest"
STK_QUERY_PATH = "/mpesa/stkpushquery/v1/query"
TRANSACTION_TYPE = "CustomerPayBillOnline"
# Daraja reports a still-running STK push as an HTTP error with this code.
PENDING_ERROR_CODES = {"500.001.1001"}
ACCOUNT_REFERENCE_MAX_LENGTH = 12
EAT = timezone(timedelta(hours=3))


def to_whole_amount(amount: Decimal | int | float) -> int:
    """Daraja only accepts whole shillings."""
    value = Decimal(str(amount))
    if value <= 0:
        raise PaymentValidationError("Amount must be positive")
    return int(value.to_integral_value(rounding=ROUND_CEILING))


class MpesaClient:
    name = "mpesa"

    def __init__(
        self,
        consumer_key: str,
        consumer_secret: str,
        passkey: str,
        shortcode: str,
        callback_url: str,
        base_url: str = MPESA_SANDBOX_URL,
        timeout: float = 8.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.consumer_key = consumer_key
        self.consumer_secret = consumer_secret
        self.passkey = passkey
        self.shortcode = shortcode
        self.callback_url = callback_url
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    @classmethod
    def from_settings(cls, transport: httpx.BaseTransport | None = None) -> "MpesaClient":
        if not settings.MPESA_CONSUMER_KEY or not settings.MPESA_CONSUMER_SECRET:
            raise GatewayError("MPESA_CONSUMER_KEY and MPESA_CONSUMER_SECRET are not set")
        if not settings.MPESA_SHORTCODE or not settings.MPESA_PASSKEY:
            raise GatewayError("MPESA_SHORTCODE and MPESA_PASSKEY are not set")
        return cls(
            consumer_key=settings.MPESA_CONSUMER_KEY,
            consumer_secret=settings.MPESA_CONSUMER_SECRET,
            passkey=settings.MPESA_PASSKEY,
            shortcode=settings.MPESA_SHORTCODE,
            callback_url=settings.MPESA_CALLBACK_URL,
            base_url=settings.MPESA_BASE_URL,
            timeout=settings.GATEWAY_TIMEOUT_SECONDS,
            transport=transport,
        )

    def _client(self) -> httpx.Client:
        return httpx.Client(base_url=self.base_url, timeout=self.timeout, transport=self.transport)

    def _get_access_token(self, client: httpx.Client, error_cls: type[GatewayError]) -> str:
        """Fetch a fresh OAuth token. Tokens are not cached between calls."""
        data = send_request(
            client,
            "GET",
            TOKEN_PATH,
            error_cls,
            "M-Pesa access token request",
            params={"grant_type": "client_credentials"},
            auth=(self.consumer_key, self.consumer_secret),
        )
        token = data.get("access_token")
        if not token:
            raise error_cls("M-Pesa access token response did not contain a token")
        return token

    @staticmethod
    def generate_timestamp(now: datetime | None = None) -> str:
        now = now or datetime.now(EAT)
        return now.strftime("%Y%m%d%H%M%S")

    def generate_password(self, timestamp: str) -> str:
        raw = f"{self.shortcode}{self.passkey}{timestamp}"
        return base64.b64encode(raw.encode("utf-8")).decode("ascii")

    def _auth_headers(self, token: str) -> dict[str, str]:
        return {**JSON_HEADERS, "Authorization": f"Bearer {token}"}

    def initiate_payment(
        self,
        amount: Decimal | int | float,
        phone_number: str,
        external_reference: str,
        redirect_url: str | None = None,
    ) -> InitiationResult:
        whole_amount = to_whole_amount(amount)
        phone = normalize_phone_number(phone_number)
        timestamp = self.generate_timestamp()

        with self._client() as client:
            token = self._get_access_token(client, GatewayInitiationError)
            data = send_request(
                client,
                "POST",
                STK_PUSH_PATH,
                GatewayInitiationError,
                "M-Pesa STK push",
                headers=self._auth_headers(token),
                json={
                    "BusinessShortCode": self.shortcode,
                    "Password": self.generate_password(timestamp),
                    "Timestamp": timestamp,
                    "TransactionType": TRANSACTION_TYPE,
                    "Amount": whole_amount,
                    "PartyA": phone,
                    "PartyB": self.shortcode,
                    "PhoneNumber": phone,
                    "CallBackURL": self.callback_url,
                    "AccountReference": external_reference[:ACCOUNT_REFERENCE_MAX_LENGTH],
                    "TransactionDesc": f"Payment {external_reference}",
                },
            )

        if str(data.get("ResponseCode")) != "0":
            raise GatewayInitiationError(
                data.get("ResponseDescription") or data.get("errorMessage") or "M-Pesa STK push was rejected",
                details=data,
            )
        checkout_request_id = data.get("CheckoutRequestID")
        if not checkout_request_id:
            raise GatewayInitiationError("M-Pesa STK push response had no CheckoutRequestID", details=data)

        logger.info("M-Pesa STK push accepted: checkout_request_id=%s", checkout_request_id)
        return InitiationResult(checkout_request_id=checkout_request_id, raw=data)

    def query_status(self, correlation_reference: str) -> GatewayStatus:
        """Query an STK push by ``CheckoutRequestID``.

        The STK query response carries no paid amount and no M-Pesa receipt
        number, so ``amount`` and ``transaction_id`` are always ``None`` here.
        Those only arrive with the callback.
        """
        timestamp = self.generate_timestamp()
        try:
            with self._client() as client:
                token = self._get_access_token(client, GatewayStatusError)
                data = send_request(
                    client,
                    "POST",
                    STK_QUERY_PATH,
                    GatewayStatusError,
                    "M-Pesa STK status query",
                    headers=self._auth_headers(token),
                    json={
                        "BusinessShortCode": self.shortcode,
                        "Password": self.generate_password(timestamp),
                        "Timestamp": timestamp,
                        "CheckoutRequestID": correlation_reference,
                    },
                )
        except GatewayStatusError as exc:
            if exc.details.get("errorCode") in PENDING_ERROR_CODES:
                return GatewayStatus(
                    state=STATE_PENDING,
                    reference=correlation_reference,
                    message=exc.details.get("errorMessage"),
                    raw=exc.details,
                )
            raise

        result_code = data.get("ResultCode")
        if result_code is None:
            state = STATE_PENDING
        elif str(result_code) == "0":
            state = STATE_COMPLETED
        else:
            state = STATE_FAILED
        return GatewayStatus(
            state=state,
            reference=correlation_reference,
            message=data.get("ResultDesc"),
            raw=data,
        )

    @staticmethod
    def parse_callback(body: Any) -> CallbackResult:
        """Normalize a Daraja ``Body.stkCallback`` payload.

        Daraja does not echo the merchant reference, so the order is matched on
        ``CheckoutRequestID``.
        """
        try:
            stk = body["Body"]["stkCallback"]
        except (KeyError, TypeError) as exc:
            raise CallbackPayloadError("Missing Body.stkCallback") from exc
        if not isinstance(stk, dict):
            raise CallbackPayloadError("Body.stkCallback must be an object")

        checkout_request_id = stk.get("CheckoutRequestID")
        result_code = stk.get("ResultCode")
        if not checkout_request_id or result_code is None:
            raise CallbackPayloadError("Missing CheckoutRequestID or ResultCode")

        try:
            success = int(result_code) == 0
        except (TypeError, ValueError) as exc:
            raise CallbackPayloadError("ResultCode must be an integer") from exc

        metadata = stk.get("CallbackMetadata") or {}
        if not isinstance(metadata, dict):
            raise CallbackPayloadError("CallbackMetadata must be an object")
        metadata_items = metadata.get("Item") or []
        if not isinstance(metadata_items, list):
            raise CallbackPayloadError("CallbackMetadata.Item must be a list")

        items = {}
        for item in metadata_items:
            if isinstance(item, dict) and isinstance(item.get("Name"), str):
                items[item["Name"]] = item.get("Value")

        receipt = items.get("MpesaReceiptNumber")
        return CallbackResult(
            success=success,
            gateway_reference=checkout_request_id,
            checkout_request_id=checkout_request_id,
            provider_reference=str(receipt) if receipt else None,
            amount=to_decimal(items.get("Amount"), "Amount"),
            message=stk.get("ResultDesc"),
        )
