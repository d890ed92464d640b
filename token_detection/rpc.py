"""JSON-RPC balance oracle backed by a single-call balance checker contract.

The checker exposes ``balances(address[] users, address[] tokens)`` and
returns one ``uint256`` per ``(user, token)`` pair, user-major. Querying a
single account therefore yields the balances in token order.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Any, Dict, List, Sequence

import aiohttp

from .address import is_valid_address, normalize_address
from .errors import OracleUnavailable
from .network import balance_checker_address

log = logging.getLogger(__name__)

BALANCES_SELECTOR = "f0002ea9"
_WORD = 64  # hex characters per 32 byte ABI word

_request_ids = itertools.count(1)


def _encode_uint(value: int) -> str:
    return format(value, "064x")


def _encode_address(address: str) -> str:
    if not is_valid_address(address):
        raise ValueError(f"invalid address: {address!r}")
    return normalize_address(address)[2:].rjust(_WORD, "0")


def encode_balances_call(users: Sequence[str], tokens: Sequence[str]) -> str:
    """ABI-encode calldata for ``balances(address[],address[])``."""

    head_size = 2 * 32
    users_offset = head_size
    tokens_offset = users_offset + 32 * (1 + len(users))
    parts = [
        BALANCES_SELECTOR,
        _encode_uint(users_offset),
        _encode_uint(tokens_offset),
        _encode_uint(len(users)),
        *(_encode_address(user) for user in users),
        _encode_uint(len(tokens)),
        *(_encode_address(token) for token in tokens),
    ]
    return "0x" + "".join(parts)


def decode_uint_array(data: str) -> List[int]:
    """Decode an ABI encoded ``uint256[]`` return value."""

    if not isinstance(data, str):
        raise ValueError("eth_call result must be a hex string")
    payload = data[2:] if data.startswith(("0x", "0X")) else data
    if not payload:
        return []
    if len(payload) % _WORD:
        raise ValueError("eth_call result is not word aligned")
    words = [int(payload[i : i + _WORD], 16) for i in range(0, len(payload), _WORD)]
    offset = words[0] // 32
    if offset >= len(words):
        raise ValueError("eth_call result offset out of range")
    length = words[offset]
    values = words[offset + 1 : offset + 1 + length]
    if len(values) != length:
        raise ValueError("eth_call result truncated")
    return values


class SingleCallBalanceOracle:
    """Fetch ERC20 balances for many tokens with one ``eth_call``."""

    def __init__(
        self,
        rpc_url: str,
        *,
        chain_id: str | None = None,
        contract_address: str | None = None,
        session: aiohttp.ClientSession | None = None,
        timeout: float = 30.0,
    ) -> None:
        contract = contract_address or balance_checker_address(chain_id)
        if not contract:
            raise ValueError(f"no balance checker contract known for chain {chain_id!r}")
        self.rpc_url = rpc_url
        self.contract_address = contract
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
            self._owns_session = True
        return self._session

    async def get_balances(self, account: str, tokens: Sequence[str]) -> Dict[str, int]:
        if not tokens:
            return {}
        try:
            calldata = encode_balances_call([account], tokens)
        except ValueError as exc:
            raise OracleUnavailable(str(exc)) from exc
        payload = {
            "jsonrpc": "2.0",
            "id": next(_request_ids),
            "method": "eth_call",
            "params": [{"to": self.contract_address, "data": calldata}, "latest"],
        }
        session = await self._get_session()
        try:
            async with session.post(self.rpc_url, json=payload) as resp:
                resp.raise_for_status()
                body = await resp.json(content_type=None)
        except asyncio.CancelledError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            raise OracleUnavailable(f"eth_call to {self.rpc_url} failed: {exc}") from exc
        return self._parse_response(body, tokens)

    @staticmethod
    def _parse_response(body: Any, tokens: Sequence[str]) -> Dict[str, int]:
        if not isinstance(body, dict):
            raise OracleUnavailable("malformed JSON-RPC response")
        error = body.get("error")
        if error:
            message = error.get("message") if isinstance(error, dict) else error
            raise OracleUnavailable(f"JSON-RPC error: {message}")
        try:
            values = decode_uint_array(body.get("result"))
        except ValueError as exc:
            raise OracleUnavailable(str(exc)) from exc
        if len(values) != len(tokens):
            raise OracleUnavailable(
                f"balance checker returned {len(values)} value(s) for {len(tokens)} token(s)"
            )
        return {token: value for token, value in zip(tokens, values) if value > 0}

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None


__all__ = [
    "BALANCES_SELECTOR",
    "encode_balances_call",
    "decode_uint_array",
    "SingleCallBalanceOracle",
]
