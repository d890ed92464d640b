"""Collaborator protocols and in-memory stores used in tests and local runs."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Iterable, List, Mapping, Protocol, Sequence

from .address import normalize_address
from .types import DetectedToken, TokenDescriptor

log = logging.getLogger(__name__)

Listener = Callable[[Mapping[str, Any]], None]
Unsubscribe = Callable[[], None]


class ObservableState(Protocol):
    """A store exposing a state snapshot and change notifications."""

    def get_state(self) -> Mapping[str, Any]:
        ...

    def subscribe(self, listener: Listener) -> Unsubscribe:
        ...


class TokensStore(ObservableState, Protocol):
    """Held, hidden and detected tokens for the selected account."""

    async def add_detected_tokens(self, tokens: Sequence[DetectedToken]) -> None:
        ...


class TokenListSource(Protocol):
    """Live catalog of known token contracts."""

    def catalog(self) -> Mapping[str, Any]:
        ...


class BalanceOracle(Protocol):
    """Answers ``account`` balances for a batch of token contracts."""

    async def get_balances(self, account: str, tokens: Sequence[str]) -> Mapping[str, Any]:
        ...


class TelemetrySink(Protocol):
    def track(self, event: str, category: str, properties: Mapping[str, Any]) -> None:
        ...


class ObservableStore:
    """Synchronous state container notifying listeners on every update."""

    def __init__(self, initial: Mapping[str, Any] | None = None) -> None:
        self._state: Dict[str, Any] = dict(initial or {})
        self._listeners: List[Listener] = []

    def get_state(self) -> Dict[str, Any]:
        return dict(self._state)

    def update_state(self, **changes: Any) -> None:
        self._state.update(changes)
        self._notify()

    def put_state(self, state: Mapping[str, Any]) -> None:
        self._state = dict(state)
        self._notify()

    def subscribe(self, listener: Listener) -> Unsubscribe:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            try:
                self._listeners.remove(listener)
            except ValueError:
                return

        return _unsubscribe

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def _notify(self) -> None:
        snapshot = self.get_state()
        for listener in list(self._listeners):
            listener(snapshot)


class InMemoryTokensStore(ObservableStore):
    """Token store that dedupes detected tokens by address."""

    def __init__(
        self,
        *,
        tokens: Iterable[Any] = (),
        ignored_tokens: Iterable[str] = (),
        detected_tokens: Iterable[Any] = (),
    ) -> None:
        super().__init__(
            {
                "tokens": list(tokens),
                "ignored_tokens": list(ignored_tokens),
                "detected_tokens": list(detected_tokens),
            }
        )
        self.add_calls: List[List[DetectedToken]] = []

    async def add_detected_tokens(self, tokens: Sequence[DetectedToken]) -> None:
        batch = list(tokens)
        self.add_calls.append(batch)
        current = list(self._state.get("detected_tokens") or [])
        seen = {normalize_address(_address_of(entry)) for entry in current}
        added = 0
        for token in batch:
            key = normalize_address(token.address)
            if not key or key in seen:
                continue
            seen.add(key)
            current.append(token.to_dict())
            added += 1
        if added:
            self.update_state(detected_tokens=current)
        log.debug("InMemoryTokensStore stored %d of %d detected token(s)", added, len(batch))


class StaticTokenList:
    """Catalog source backed by an in-memory mapping."""

    def __init__(self, entries: Mapping[str, Any] | None = None) -> None:
        self._catalog: Dict[str, Any] = {}
        self.replace(entries or {})

    def catalog(self) -> Mapping[str, Any]:
        return self._catalog

    def replace(self, entries: Mapping[str, Any]) -> None:
        catalog: Dict[str, Any] = {}
        for address, entry in entries.items():
            catalog[address] = TokenDescriptor.coerce(entry, address=address)
        self._catalog = catalog

    def __len__(self) -> int:
        return len(self._catalog)


def _address_of(entry: Any) -> Any:
    if isinstance(entry, Mapping):
        return entry.get("address")
    return getattr(entry, "address", entry)


__all__ = [
    "Listener",
    "Unsubscribe",
    "ObservableState",
    "TokensStore",
    "TokenListSource",
    "BalanceOracle",
    "TelemetrySink",
    "ObservableStore",
    "InMemoryTokensStore",
    "StaticTokenList",
]
