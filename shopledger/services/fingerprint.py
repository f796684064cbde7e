"""Content fingerprints used as import dedup keys."""

import hashlib
from decimal import Decimal
from uuid import UUID

# ASCII unit separator; never produced by spreadsheet exports
FIELD_SEPARATOR = "\x1f"

_CENT = Decimal("0.01")


def file_hash(payload: bytes) -> str:
    """SHA256 of the raw uploaded bytes, independent of parsing."""
    return hashlib.sha256(payload).hexdigest()


def _normalize_text(value: str | None) -> str:
    if value is None:
        return ""
    return " ".join(value.split())


def _normalize_number(value: Decimal | int | str | None, *, money: bool) -> str:
    if value is None or value == "":
        return ""
    number = Decimal(str(value))
    if money:
        return str(number.quantize(_CENT))
    return str(number.normalize()) if number != number.to_integral_value() else str(int(number))


def record_hash(
    owner_id: UUID | str,
    platform: str | None,
    external_id: str | None,
    descriptor: str | None,
    quantity: Decimal | int | None,
    total: Decimal | str | None,
) -> str:
    """Line-level dedup key.

    Hash = SHA256(owner␟platform␟external_id␟descriptor␟quantity␟total)

    Only business fields a user can reproduce by re-exporting the same report
    are included. Whitespace runs collapse and money is fixed to two decimals,
    so "1500" and "1500.00" fingerprint identically.
    """
    components = [
        str(owner_id),
        _normalize_text(platform).lower(),
        _normalize_text(external_id),
        _normalize_text(descriptor),
        _normalize_number(quantity, money=False),
        _normalize_number(total, money=True),
    ]
    hash_input = FIELD_SEPARATOR.join(components).encode("utf-8")
    return hashlib.sha256(hash_input).hexdigest()
