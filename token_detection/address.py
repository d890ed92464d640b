"""Utility helpers for normalising token contract addresses."""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any, Iterable

_HEX_ADDRESS_RE = re.compile(r"^0x[0-9a-f]{40}$")
_ZERO_WIDTH_CHARS = {
    "\u200b",  # zero-width space
    "\u200c",  # zero-width non-joiner
    "\u200d",  # zero-width joiner
    "\u200e",  # left-to-right mark
    "\u200f",  # right-to-left mark
    "\u2060",  # word joiner
    "\ufeff",  # byte order mark
}
_ZERO_WIDTH_TRANSLATION = str.maketrans({ord(ch): None for ch in _ZERO_WIDTH_CHARS})


def normalize_address(value: object | None) -> str:
    """Return ``value`` stripped and lower-cased for identity comparisons.

    Addresses are compared case-insensitively everywhere in the engine, so the
    normalised form is only used for membership tests and never written back
    to a store.
    """

    if value is None:
        return ""
    if not isinstance(value, str):
        value = str(value)
    return value.translate(_ZERO_WIDTH_TRANSLATION).strip().lower()


def addresses_equal(left: object | None, right: object | None) -> bool:
    """Case-insensitive address comparison."""

    a = normalize_address(left)
    return bool(a) and a == normalize_address(right)


def is_valid_address(value: object | None) -> bool:
    """Return ``True`` when ``value`` looks like a 20 byte hex address."""

    return bool(_HEX_ADDRESS_RE.match(normalize_address(value)))


def _entry_address(entry: Any) -> Any:
    if isinstance(entry, str):
        return entry
    if isinstance(entry, Mapping):
        return entry.get("address")
    return getattr(entry, "address", None)


def address_set(entries: Iterable[Any] | None) -> frozenset[str]:
    """Collect normalised addresses from strings, mappings or token objects."""

    result: set[str] = set()
    for entry in entries or ():
        address = normalize_address(_entry_address(entry))
        if address:
            result.add(address)
    return frozenset(result)


__all__ = [
    "normalize_address",
    "addresses_equal",
    "is_valid_address",
    "address_set",
]
