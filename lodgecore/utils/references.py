"""
Booking reference codes: PREFIX-XXXXXX, uppercase alphanumeric.
"""
import secrets
import string

from lodgecore import config

REFERENCE_ALPHABET = string.ascii_uppercase + string.digits
REFERENCE_LENGTH = 6


def generate_booking_reference(prefix: str = None) -> str:
    prefix = prefix or config.BOOKING_REFERENCE_PREFIX
    body = "".join(secrets.choice(REFERENCE_ALPHABET) for _ in range(REFERENCE_LENGTH))
    return f"{prefix}-{body}"


def normalize_reference(reference: str) -> str:
    return (reference or "").strip().upper()
