from datetime import datetime, timedelta, timezone

from fastapi import status
from fastapi.security import HTTPAuthorizationCredentials
from jose import jwt

from storefront.config import settings
from storefront.dependencies import get_current_user_optional
from storefront.services.auth_tokens import create_access_token, decode_access_token


def _token(claims: dict) -> str:
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def test_get_current_user_optional_resolves_user(db, test_user):
    credentials = HTTPAuthorizationCredentials(scheme="Bearer", credentials=create_access_token(test_user.id))

    user = get_current_user_optional(credentials, db)

    assert user is not None
    assert user.id == test_user.id


def test_get_current_user_optional_none(db):
    assert get_current_user_optional(None, db) is None


def test_get_current_user_optional_invalid_token(db):
    credentials = HTTPAuthorizationCredentials(scheme="Bearer", credentials="invalid_token")
    assert get_current_user_optional(credentials, db) is None


def test_protected_endpoint_without_token(client):
    response = client.get("/api/orders/me")
    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    assert response.json()["detail"] == "Not authenticated"


def test_protected_endpoint_with_expired_token(client, test_user):
    expired = _token({"sub": str(test_user.id), "exp": datetime.now(timezone.utc) - timedelta(hours=1)})

    response = client.get("/api/orders/me", headers={"Authorization": f"Bearer {expired}"})

    assert response.status_code == status.HTTP_401_UNAUTHORIZED


def test_protected_endpoint_with_unknown_user(client, db):
    token = create_access_token(99999)

    response = client.get("/api/orders/me", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == status.HTTP_401_UNAUTHORIZED


def test_decode_access_token_rejects_other_token_types(test_user):
    refresh = _token(
        {
            "sub": str(test_user.id),
            "type": "refresh",
            "exp": datetime.now(timezone.utc) + timedelta(hours=1),
        }
    )

    assert decode_access_token(refresh) is None
    assert decode_access_token(create_access_token(test_user.id)) == test_user.id


def test_decode_access_token_rejects_non_numeric_subject():
    token = _token({"sub": "alice", "exp": datetime.now(timezone.utc) + timedelta(hours=1)})
    assert decode_access_token(token) is None
