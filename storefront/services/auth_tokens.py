from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from storefront.config import settings

ACCESS_TOKEN_TYPE = "access"


def create_access_token(user_id: int, expires_in_minutes: int = 60) -> str:
    """Mint a bearer token in the format the storefront's auth provider issues."""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "type": ACCESS_TOKEN_TYPE,
        "iat": now,
        "exp": now + timedelta(minutes=expires_in_minutes),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> int | None:
    """Return the user id carried by ``token``, or None when it is not a valid access token."""
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        return None
    if payload.get("type") not in {None, ACCESS_TOKEN_TYPE}:
        return None
    sub = payload.get("sub")
    if sub is None:
        return None
    try:
        return int(sub)
    except (TypeError, ValueError):
        return None
