"""Sequential, bounded balance queries against a :class:`BalanceOracle`."""

from __future__ import annotations

import asyncio
import logging
from decimal import ROUND_CEILING, Decimal, InvalidOperation
from typing import Any, AsyncIterator, Dict, Iterator, Mapping, Sequence

from .address import normalize_address
from .stores import BalanceOracle
from .types import BatchResult

log = logging.getLogger(__name__)

MAX_BATCH_SIZE = 1000


def iter_chunks(items: Sequence[str], size: int) -> Iterator[list[str]]:
    """Yield consecutive slices of at most ``size`` items."""

    if size <= 0:
        raise ValueError("chunk size must be positive")
    for start in range(0, len(items), size):
        yield list(items[start : start + size])


def coerce_balance(value: Any) -> int:
    """Return ``value`` as an integer balance, ``0`` when unparseable.

    Hex and decimal integers are taken as base units. Fractional or
    scientific notation amounts (``"0.5"``, ``"1e18"``) are rounded up, so any
    positive amount stays non-zero.
    """

    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    text = str(value).strip().lower()
    if not text:
        return 0
    if text.startswith("0x"):
        try:
            return int(text, 16)
        except ValueError:
            return 0
    try:
        return int(text)
    except ValueError:
        pass
    try:
        amount = Decimal(text)
    except InvalidOperation:
        return 0
    if not amount.is_finite() or amount <= 0:
        return 0
    return int(amount.to_integral_value(rounding=ROUND_CEILING))


def nonzero_balances(tokens: Sequence[str], result: Mapping[str, Any] | None) -> Dict[str, int]:
    """Map non-zero entries of ``result`` back onto the requested ``tokens``.

    Oracles may answer with a different address spelling (checksum casing),
    so matching is case-insensitive. Addresses the batch did not ask for are
    ignored.
    """

    if not result:
        return {}
    requested = {normalize_address(token): token for token in tokens}
    balances: Dict[str, int] = {}
    for address, raw in result.items():
        token = requested.get(normalize_address(address))
        if token is None:
            continue
        amount = coerce_balance(raw)
        if amount > 0:
            balances[token] = amount
    return balances


class BalanceBatchFetcher:
    """Query token balances for an account in bounded, ordered batches."""

    def __init__(self, oracle: BalanceOracle, *, batch_size: int = MAX_BATCH_SIZE) -> None:
        self.oracle = oracle
        self.batch_size = max(1, min(int(batch_size), MAX_BATCH_SIZE))

    async def iter_batches(
        self, account: str, candidates: Sequence[str]
    ) -> AsyncIterator[BatchResult]:
        """Yield one :class:`BatchResult` per oracle call.

        Each call is awaited before the next one is issued. When a call fails
        the failed batch is yielded with ``error`` set and iteration stops, so
        later batches stay unchecked and remain candidates on the next run.
        """

        for index, batch in enumerate(iter_chunks(candidates, self.batch_size)):
            if not batch:
                continue
            try:
                result = await self.oracle.get_balances(account, batch)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                log.warning(
                    "Balance batch %d (%d token(s)) failed for %s: %s",
                    index,
                    len(batch),
                    account,
                    exc,
                )
                yield BatchResult(index=index, tokens=batch, error=exc)
                return
            balances = nonzero_balances(batch, result)
            log.debug(
                "Balance batch %d checked %d token(s), %d with balance",
                index,
                len(batch),
                len(balances),
            )
            yield BatchResult(index=index, tokens=batch, balances=balances)


__all__ = [
    "MAX_BATCH_SIZE",
    "iter_chunks",
    "coerce_balance",
    "nonzero_balances",
    "BalanceBatchFetcher",
]
