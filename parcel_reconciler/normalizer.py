"""
APN normalization and matching.

County assessors print the same parcel number many ways
("123-45 .678", "12345678", "123.45.678"). Matching is exact equality
of the canonical key, never substring or fuzzy.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from typing import Optional

from .models import ParcelRecord

_SEPARATORS = re.compile(r"[\s\-.]")


def normalize_apn(raw: Optional[str]) -> str:
    """Strip whitespace, hyphens and periods, then lower-case.

    ``None`` and empty input give ``""``, which is never a match key.
    """
    return _SEPARATORS.sub("", raw or "").lower()


def same_parcel(a: Optional[str], b: Optional[str]) -> bool:
    """True when both identifiers normalize to the same non-empty key."""
    key = normalize_apn(a)
    return bool(key) and key == normalize_apn(b)


def find_match(records: Iterable[ParcelRecord], key: str) -> ParcelRecord | None:
    """First record whose normalized APN equals ``key``; ``None`` for an empty key."""
    if not key:
        return None
    for record in records:
        if normalize_apn(record.apn) == key:
            return record
    return None
