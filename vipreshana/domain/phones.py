from __future__ import annotations

import re

from .errors import InvalidCode, InvalidPhone

_SEPARATORS = re.compile(r"[\s().-]")
_PHONE = re.compile(r"^\+?\d{10,15}$")


def normalize_phone(raw: str) -> str:
    """Strip formatting characters and validate the digit count.

    A leading ``+`` is kept so international numbers stay distinct from
    national ones.
    """

    candidate = _SEPARATORS.sub("", raw or "")
    if not _PHONE.match(candidate):
        raise InvalidPhone()
    return candidate


def validate_code(code: str, length: int) -> str:
    candidate = (code or "").strip()
    if len(candidate) != length or not candidate.isdigit():
        raise InvalidCode()
    return candidate
