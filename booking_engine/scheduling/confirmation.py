"""Customer-facing confirmation codes.

Codes are 8 characters drawn uniformly from A-Z and 0-9 (about 41 bits).
They are booking references, not credentials. Uniqueness is enforced by
the store's unique constraint, not here.
"""

import re
import secrets
import string
from typing import Optional

CODE_ALPHABET = string.ascii_uppercase + string.digits
DEFAULT_CODE_LENGTH = 8

_CODE_PATTERN = re.compile(r"^[A-Z0-9]+$")


def generate_confirmation_code(length: int = DEFAULT_CODE_LENGTH) -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def is_valid_code_format(code: str, length: int = DEFAULT_CODE_LENGTH) -> bool:
    return len(code) == length and bool(_CODE_PATTERN.match(code))


def verify_confirmation_code(stored: Optional[str], supplied: Optional[str]) -> bool:
    """Exact, case-sensitive match; a missing code on either side never matches."""
    if not stored or not supplied:
        return False
    return stored == supplied
