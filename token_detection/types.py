from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from .address import address_set, normalize_address
from .network import is_token_detection_enabled_for_network


def _coerce_int(value: Any, default: int = 0) -> int:
    try:
        if isinstance(value, bool):
            return default
        if isinstance(value, int):
            return value
        text = str(value).strip()
        if not text:
            return default
        return int(text, 0)
    except (TypeError, ValueError):
        return default


@dataclass(frozen=True, slots=True)
class TokenDescriptor:
    """Catalog entry describing a token contract."""

    address: str
    symbol: str
    decimals: int
    icon_url: Optional[str] = None
    aggregators: Tuple[str, ...] = ()

    @classmethod
    def coerce(cls, entry: Any, *, address: str | None = None) -> "TokenDescriptor":
        """Build a descriptor from a catalog value.

        Catalog sources hand out either ready descriptors or the raw token list
        payload (``iconUrl``/``aggregators`` keys). ``address`` is the catalog
        key and is used when the payload omits its own address.
        """

        if isinstance(entry, cls):
            return entry
        if not isinstance(entry, Mapping):
            raise TypeError(f"unsupported catalog entry: {entry!r}")
        icon = entry.get("iconUrl", entry.get("icon_url", entry.get("image")))
        aggregators = entry.get("aggregators") or ()
        if isinstance(aggregators, str):
            aggregators = (aggregators,)
        return cls(
            address=str(entry.get("address") or address or ""),
            symbol=str(entry.get("symbol") or ""),
            decimals=_coerce_int(entry.get("decimals")),
            icon_url=str(icon) if icon else None,
            aggregators=tuple(str(item) for item in aggregators),
        )


@dataclass(frozen=True, slots=True)
class DetectedToken:
    """Record persisted to the token store for a discovered token."""

    address: str
    symbol: str
    decimals: int
    image: Optional[str] = None
    aggregators: Tuple[str, ...] = ()

    @classmethod
    def from_descriptor(cls, descriptor: TokenDescriptor) -> "DetectedToken":
        return cls(
            address=descriptor.address,
            symbol=descriptor.symbol,
            decimals=descriptor.decimals,
            image=descriptor.icon_url,
            aggregators=descriptor.aggregators,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "symbol": self.symbol,
            "decimals": self.decimals,
            "image": self.image,
            "aggregators": list(self.aggregators),
        }


@dataclass(frozen=True, slots=True)
class KnownTokens:
    """Normalised address sets the engine must never probe again."""

    held: frozenset[str] = frozenset()
    hidden: frozenset[str] = frozenset()
    detected: frozenset[str] = frozenset()

    @classmethod
    def from_lists(
        cls,
        tokens: Iterable[Any] | None = None,
        ignored_tokens: Iterable[Any] | None = None,
        detected_tokens: Iterable[Any] | None = None,
    ) -> "KnownTokens":
        return cls(
            held=address_set(tokens),
            hidden=address_set(ignored_tokens),
            detected=address_set(detected_tokens),
        )

    @classmethod
    def from_state(cls, state: Mapping[str, Any] | None) -> "KnownTokens":
        state = state or {}
        return cls.from_lists(
            state.get("tokens"),
            state.get("ignored_tokens"),
            state.get("detected_tokens"),
        )

    def __contains__(self, address: object) -> bool:
        key = normalize_address(address)
        return key in self.held or key in self.hidden or key in self.detected


@dataclass(frozen=True, slots=True)
class DetectionContext:
    """Snapshot of the external state that decides whether detection runs."""

    selected_address: Optional[str] = None
    use_token_detection: bool = False
    chain_id: Optional[str] = None
    session_unlocked: bool = False
    view_active: bool = False

    @property
    def detection_enabled_for_network(self) -> bool:
        return is_token_detection_enabled_for_network(self.chain_id)

    @property
    def is_active(self) -> bool:
        return self.view_active and self.session_unlocked


@dataclass(slots=True)
class BatchResult:
    """Outcome of one balance query."""

    index: int
    tokens: List[str]
    balances: Dict[str, int] = field(default_factory=dict)
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(slots=True)
class DetectionReport:
    """Summary of one pipeline execution."""

    account: Optional[str] = None
    candidates: int = 0
    batches: int = 0
    detected: List[DetectedToken] = field(default_factory=list)
    failure: Optional[BaseException] = None
    skipped: Optional[str] = None
    discarded: int = 0
    superseded: bool = False

    @property
    def ran(self) -> bool:
        return self.skipped is None


__all__ = [
    "TokenDescriptor",
    "DetectedToken",
    "KnownTokens",
    "DetectionContext",
    "BatchResult",
    "DetectionReport",
]
