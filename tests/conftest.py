import asyncio
import types
from typing import Any, Dict, Iterable, List, Mapping, Sequence

import pytest

from token_detection.controller import DetectTokensController
from token_detection.errors import OracleUnavailable
from token_detection.stores import InMemoryTokensStore, ObservableStore, StaticTokenList

ACCOUNT = "0x" + "ab" * 20
OTHER_ACCOUNT = "0x" + "cd" * 20


def _address(index: int) -> str:
    return "0x" + format(index, "040x")


class RecordingOracle:
    """Balance oracle fake recording every call."""

    def __init__(
        self,
        balances: Mapping[str, int] | None = None,
        *,
        fail_on: Iterable[int] = (),
        delay: float = 0.0,
    ) -> None:
        self.balances = {key.lower(): value for key, value in (balances or {}).items()}
        self.fail_on = set(fail_on)
        self.delay = delay
        self.calls: List[tuple[str, List[str]]] = []
        self.active = 0
        self.max_active = 0
        self.before_return = None

    async def get_balances(self, account: str, tokens: Sequence[str]) -> Dict[str, int]:
        index = len(self.calls)
        self.calls.append((account, list(tokens)))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if index in self.fail_on:
                raise OracleUnavailable(f"batch {index} unavailable")
            if self.before_return is not None:
                self.before_return()
            return {token: self.balances.get(token.lower(), 0) for token in tokens}
        finally:
            self.active -= 1


class RecordingTelemetry:
    def __init__(self) -> None:
        self.events: List[tuple[str, str, Dict[str, Any]]] = []

    def track(self, event: str, category: str, properties: Mapping[str, Any]) -> None:
        self.events.append((event, category, dict(properties)))


@pytest.fixture
def make_address():
    return _address


@pytest.fixture
def make_catalog():
    def _make(addresses: Iterable[str]) -> Dict[str, Dict[str, Any]]:
        catalog: Dict[str, Dict[str, Any]] = {}
        for idx, address in enumerate(addresses):
            catalog[address] = {
                "address": address,
                "symbol": f"TK{idx}",
                "decimals": 18,
                "iconUrl": f"https://icons.example/{idx}.png",
                "aggregators": ["coinGecko", "1inch"],
            }
        return catalog

    return _make


@pytest.fixture
def oracle_factory():
    return RecordingOracle


@pytest.fixture
def telemetry():
    return RecordingTelemetry()


@pytest.fixture
def build_controller(make_catalog, telemetry):
    """Return a factory wiring a controller to in-memory stores.

    Must be called inside a running event loop.
    """

    def _build(
        *,
        catalog: Mapping[str, Any] | None = None,
        oracle: Any = None,
        tokens_store: Any = None,
        selected_address: str | None = ACCOUNT,
        use_token_detection: bool = True,
        chain_id: str = "0x1",
        unlocked: bool = True,
        view_active: bool = True,
        interval: float | None = None,
        batch_size: int = 1000,
    ) -> types.SimpleNamespace:
        preferences = ObservableStore(
            {
                "selected_address": selected_address,
                "use_token_detection": use_token_detection,
            }
        )
        network = ObservableStore({"chain_id": chain_id})
        session = ObservableStore({"is_unlocked": unlocked})
        tokens_store = tokens_store if tokens_store is not None else InMemoryTokensStore()
        token_list = StaticTokenList(catalog or {})
        oracle = oracle if oracle is not None else RecordingOracle()
        controller = DetectTokensController(
            preferences=preferences,
            network=network,
            session=session,
            token_list=token_list,
            tokens_store=tokens_store,
            balance_oracle=oracle,
            telemetry=telemetry,
            interval=interval,
            batch_size=batch_size,
            view_active=view_active,
        )
        return types.SimpleNamespace(
            controller=controller,
            preferences=preferences,
            network=network,
            session=session,
            tokens_store=tokens_store,
            token_list=token_list,
            oracle=oracle,
            telemetry=telemetry,
        )

    return _build
