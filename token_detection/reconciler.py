from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Iterable, List, Mapping, Optional

from .address import normalize_address
from .errors import PersistenceError
from .stores import TelemetrySink, TokensStore
from .telemetry import (
    ASSET_TYPE_TOKEN,
    TOKEN_DETECTED_EVENT,
    TOKEN_STANDARD_ERC20,
    WALLET_CATEGORY,
    safe_track,
)
from .types import BatchResult, DetectedToken, TokenDescriptor

log = logging.getLogger(__name__)


def _catalog_entry(catalog: Mapping[str, Any], address: str) -> tuple[str, Any] | None:
    entry = catalog.get(address)
    if entry is not None:
        return address, entry
    wanted = normalize_address(address)
    for key, value in catalog.items():
        if normalize_address(key) == wanted:
            return key, value
    return None


def build_detected_tokens(
    addresses: Iterable[str], catalog: Mapping[str, Any]
) -> List[DetectedToken]:
    """Turn non-zero balance addresses into detected-token records."""

    records: List[DetectedToken] = []
    for address in addresses:
        found = _catalog_entry(catalog, address)
        if found is None:
            log.debug("Detected balance for %s which is no longer in the catalog", address)
            continue
        key, entry = found
        try:
            descriptor = TokenDescriptor.coerce(entry, address=key)
        except TypeError as exc:
            log.debug("Skipping malformed catalog entry for %s: %s", key, exc)
            continue
        records.append(DetectedToken.from_descriptor(descriptor))
    return records


class Reconciler:
    """Persist discoveries from a balance batch and report them."""

    def __init__(self, store: TokensStore, telemetry: TelemetrySink) -> None:
        self.store = store
        self.telemetry = telemetry

    async def reconcile(
        self,
        batch: BatchResult,
        catalog: Mapping[str, Any],
        *,
        commit_guard: Optional[Callable[[], bool]] = None,
    ) -> List[DetectedToken]:
        records = build_detected_tokens(list(batch.balances), catalog)
        if not records:
            return []
        if commit_guard is not None and not commit_guard():
            log.info(
                "Discarding %d detected token(s) from batch %d; account changed mid-run",
                len(records),
                batch.index,
            )
            return []

        safe_track(
            self.telemetry,
            TOKEN_DETECTED_EVENT,
            WALLET_CATEGORY,
            {
                "tokens": [f"{record.symbol} - {record.address}" for record in records],
                "token_standard": TOKEN_STANDARD_ERC20,
                "asset_type": ASSET_TYPE_TOKEN,
            },
        )
        try:
            await self.store.add_detected_tokens(records)
        except asyncio.CancelledError:
            raise
        except PersistenceError:
            raise
        except Exception as exc:
            raise PersistenceError(
                f"failed to store {len(records)} detected token(s): {exc}"
            ) from exc
        log.info(
            "Detected %d new token(s): %s",
            len(records),
            ", ".join(record.symbol or record.address for record in records),
        )
        return records


__all__ = ["Reconciler", "build_detected_tokens"]
