import json
from unittest.mock import patch
from urllib.parse import urlsplit

from fastapi import status

from storefront.models.cart import CartItem
from storefront.services.mpesa_service import MpesaClient
from storefront.services.payhero_service import PayheroClient


def _payhero_payload(success=True, reference="ORD1-abc123", **extra):
    payload = {
        "paymentSuccess": success,
        "reference": "prov_999",
        "user_reference": reference,
        "provider": "m-pesa",
    }
    if success:
        payload.update({"providerReference": "SAF7JFHP9J", "amount": 1500})
    payload.update(extra)
    return payload


def _mpesa_payload(result_code=0, checkout_request_id="ws_abc123", amount=1500):
    callback = {
        "MerchantRequestID": "29115-34620561-1",
        "CheckoutRequestID": checkout_request_id,
        "ResultCode": result_code,
        "ResultDesc": "The service request is processed successfully."
        if result_code == 0
        else "Request cancelled by user",
    }
    if result_code == 0:
        callback["CallbackMetadata"] = {
            "Item": [
                {"Name": "Amount", "Value": amount},
                {"Name": "MpesaReceiptNumber", "Value": "NLJ7RT61SV"},
                {"Name": "TransactionDate", "Value": 20191219102115},
                {"Name": "PhoneNumber", "Value": 254712345678},
            ]
        }
    return {"Body": {"stkCallback": callback}}


def test_payhero_callback_success(client, db, initiated_order, cart_items):
    """Successful callback marks the order paid and empties the cart."""
    response = client.post("/payment/callback", json=_payhero_payload())

    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {"received": True, "message": "Payment processed successfully"}

    db.refresh(initiated_order)
    assert initiated_order.payment_status == "completed"
    assert initiated_order.status == "processing"
    assert initiated_order.gateway_reference == "prov_999"
    assert initiated_order.transaction_id == "SAF7JFHP9J"
    assert db.query(CartItem).filter(CartItem.user_id == initiated_order.user_id).count() == 0


def test_payhero_callback_idempotent(client, db, initiated_order):
    """Redelivered callback is acknowledged without touching the order."""
    client.post("/payment/callback", json=_payhero_payload())
    db.refresh(initiated_order)
    first_updated_at = initiated_order.updated_at

    response = client.post("/payment/callback", json=_payhero_payload(providerReference="OTHER"))

    assert response.status_code == status.HTTP_200_OK
    assert response.json()["message"] == "Order already processed."
    db.refresh(initiated_order)
    assert initiated_order.transaction_id == "SAF7JFHP9J"
    assert initiated_order.updated_at == first_updated_at


def test_payhero_callback_failure(client, db, initiated_order, cart_items):
    response = client.post(
        "/payment/callback",
        json=_payhero_payload(success=False, message="Insufficient funds"),
    )

    assert response.status_code == status.HTTP_200_OK
    assert response.json()["message"] == "Payment failed or cancelled as per callback."
    db.refresh(initiated_order)
    assert initiated_order.payment_status == "failed"
    assert initiated_order.status == "cancelled"
    assert initiated_order.payment_message == "Insufficient funds"
    assert db.query(CartItem).filter(CartItem.user_id == initiated_order.user_id).count() == 2


def test_payhero_callback_order_not_found(client, initiated_order):
    """Unknown reference is acknowledged so the gateway stops retrying."""
    response = client.post("/payment/callback", json=_payhero_payload(reference="ORD999-ffffff"))

    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {"received": True, "message": "Order record not found by reference."}


def test_payhero_callback_api_shape(client, db, initiated_order):
    payload = {
        "forward_url": "",
        "response": {
            "Amount": 1500,
            "CheckoutRequestID": "ws_abc123",
            "ExternalReference": "ORD1-abc123",
            "MpesaReceiptNumber": "SAE3YULR0Y",
            "ResultCode": 0,
            "ResultDesc": "The service request is processed successfully.",
            "Status": "Success",
        },
        "status": True,
    }

    response = client.post("/payment/callback", json=payload)

    assert response.status_code == status.HTTP_200_OK
    db.refresh(initiated_order)
    assert initiated_order.payment_status == "completed"
    assert initiated_order.transaction_id == "SAE3YULR0Y"


def test_payhero_callback_missing_fields(client, db, initiated_order):
    response = client.post("/payment/callback", json={"paymentSuccess": True})

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["detail"].startswith("Invalid payload")
    db.refresh(initiated_order)
    assert initiated_order.payment_status == "pending"


def test_payhero_callback_invalid_json(client):
    response = client.post(
        "/payment/callback",
        content=b"not json",
        headers={"Content-Type": "application/json"},
    )

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["detail"] == "Invalid JSON"


def test_payhero_callback_processing_error(client, initiated_order):
    with patch(
        "storefront.webhooks.payment_callback.handle_callback",
        side_effect=RuntimeError("database is gone"),
    ):
        response = client.post("/payment/callback", json=_payhero_payload())

    assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
    assert response.json()["detail"] == "Error processing callback"


def test_callback_token_required_when_configured(client, db, initiated_order, monkeypatch):
    monkeypatch.setenv("PAYMENT_CALLBACK_SECRET", "s3cret")

    missing = client.post("/payment/callback", json=_payhero_payload())
    wrong = client.post(
        "/payment/callback",
        json=_payhero_payload(),
        headers={"x-callback-token": "guess"},
    )

    assert missing.status_code == status.HTTP_401_UNAUTHORIZED
    assert missing.json()["detail"] == "Missing callback token"
    assert wrong.status_code == status.HTTP_401_UNAUTHORIZED
    assert wrong.json()["detail"] == "Invalid callback token"
    db.refresh(initiated_order)
    assert initiated_order.payment_status == "pending"


def test_callback_token_accepted_from_header_or_query(client, db, initiated_order, monkeypatch):
    monkeypatch.setenv("PAYMENT_CALLBACK_SECRET", "s3cret")

    by_header = client.post(
        "/payment/callback",
        json=_payhero_payload(),
        headers={"x-callback-token": "s3cret"},
    )
    by_query = client.post("/payment/mpesa/callback?token=s3cret", json=_mpesa_payload())

    assert by_header.status_code == status.HTTP_200_OK
    assert by_header.json()["message"] == "Payment processed successfully"
    assert by_query.status_code == status.HTTP_200_OK
    assert by_query.json()["message"] == "Order already processed."


def test_mpesa_callback_success(client, db, initiated_order, cart_items):
    response = client.post(
        "/payment/mpesa/callback",
        content=json.dumps(_mpesa_payload()).encode(),
        headers={"Content-Type": "application/json"},
    )

    assert response.status_code == status.HTTP_200_OK
    assert response.json()["message"] == "Payment processed successfully"
    db.refresh(initiated_order)
    assert initiated_order.payment_status == "completed"
    assert initiated_order.status == "processing"
    assert initiated_order.transaction_id == "NLJ7RT61SV"
    assert initiated_order.needs_review is False


def test_mpesa_callback_cancelled_by_user(client, db, initiated_order):
    response = client.post("/payment/mpesa/callback", json=_mpesa_payload(result_code=1032))

    assert response.status_code == status.HTTP_200_OK
    db.refresh(initiated_order)
    assert initiated_order.payment_status == "failed"
    assert initiated_order.status == "cancelled"
    assert initiated_order.payment_message == "Request cancelled by user"


def test_mpesa_callback_amount_mismatch_flags_review(client, db, initiated_order):
    response = client.post("/payment/mpesa/callback", json=_mpesa_payload(amount=10))

    assert response.status_code == status.HTTP_200_OK
    db.refresh(initiated_order)
    assert initiated_order.payment_status == "completed"
    assert initiated_order.needs_review is True


def test_mpesa_callback_unknown_checkout_request(client, initiated_order):
    response = client.post("/payment/mpesa/callback", json=_mpesa_payload(checkout_request_id="ws_unknown"))

    assert response.status_code == status.HTTP_200_OK
    assert response.json()["message"] == "Order record not found by reference."


def test_mpesa_callback_malformed(client):
    response = client.post("/payment/mpesa/callback", json={"Body": {}})

    assert response.status_code == status.HTTP_400_BAD_REQUEST


def test_default_callback_url_carries_configured_token(client, db, initiated_order, monkeypatch):
    """The URL handed to Daraja authenticates its own callback once a secret is set."""
    monkeypatch.setenv("PAYMENT_CALLBACK_SECRET", "s3cret")
    monkeypatch.delenv("MPESA_CALLBACK_URL", raising=False)

    callback_url = urlsplit(MpesaClient.from_settings().callback_url)
    assert callback_url.query == "token=s3cret"

    response = client.post(f"{callback_url.path}?{callback_url.query}", json=_mpesa_payload())

    assert response.status_code == status.HTTP_200_OK
    assert response.json()["message"] == "Payment processed successfully"
    db.refresh(initiated_order)
    assert initiated_order.payment_status == "completed"


def test_default_payhero_callback_url_carries_configured_token(monkeypatch):
    monkeypatch.setenv("PAYMENT_CALLBACK_SECRET", "s3cret")
    monkeypatch.setenv("BASE_URL", "https://shop.example.com/")
    monkeypatch.delenv("PAYHERO_CALLBACK_URL", raising=False)

    assert PayheroClient.from_settings().callback_url == "https://shop.example.com/payment/callback?token=s3cret"


def test_mpesa_callback_metadata_of_wrong_type(client, initiated_order):
    payload = _mpesa_payload()
    payload["Body"]["stkCallback"]["CallbackMetadata"] = ["Amount", 1500]

    response = client.post("/payment/mpesa/callback", json=payload)

    assert response.status_code == status.HTTP_400_BAD_REQUEST
