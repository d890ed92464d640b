"""Select the catalog addresses that still need a balance probe."""

from __future__ import annotations

from typing import Any, List, Mapping

from .types import KnownTokens


def resolve_candidates(catalog: Mapping[str, Any] | None, known: KnownTokens) -> List[str]:
    """Return catalog addresses absent from every known-token set.

    The result keeps catalog iteration order and the catalog's own key
    spelling so entries can be looked up again after the balance query.
    Neither argument is modified.
    """

    if not catalog:
        return []
    return [address for address in catalog if address not in known]


__all__ = ["resolve_candidates"]
