import re

from storefront.services.errors import PaymentValidationError

COUNTRY_CODE = "254"
_CANONICAL_MSISDN = re.compile(r"254[17][0-9]{8}")
_SEPARATORS = re.compile(r"[\s\-().]")


def normalize_phone_number(phone_number: str | int | None) -> str:
    """Normalize a Kenyan mobile number to the 12-digit ``2547XXXXXXXX`` form.

    Accepts ``0712345678``, ``+254712345678``, ``254712345678`` and ``712345678``
    (and the ``01...`` equivalents).
    """
    if phone_number is None:
        raise PaymentValidationError("Phone number is required")

    cleaned = _SEPARATORS.sub("", str(phone_number).strip())
    if cleaned.startswith("+"):
        cleaned = cleaned[1:]
    if not (cleaned.isascii() and cleaned.isdigit()):
        raise PaymentValidationError("Phone number must contain digits only")

    if cleaned.startswith(COUNTRY_CODE):
        candidate = cleaned
    elif cleaned.startswith("0"):
        candidate = COUNTRY_CODE + cleaned[1:]
    else:
        candidate = COUNTRY_CODE + cleaned

    if not _CANONICAL_MSISDN.fullmatch(candidate):
        raise PaymentValidationError("Invalid phone number: expected a Kenyan mobile number")
    return candidate
