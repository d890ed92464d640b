from __future__ import annotations

from typing import Dict

MAINNET_CHAIN_ID = "0x1"
BSC_CHAIN_ID = "0x38"
POLYGON_CHAIN_ID = "0x89"
AVALANCHE_CHAIN_ID = "0xa86a"

# Single-call balance checker deployments per chain.
SINGLE_CALL_BALANCES_ADDRESSES: Dict[str, str] = {
    MAINNET_CHAIN_ID: "0xb1f8e55c7f64d203c1400b9d8555d050f94adf39",
    BSC_CHAIN_ID: "0x2352c63a83f9fd126af8676146721fa00924d7e4",
    POLYGON_CHAIN_ID: "0x2352c63a83f9fd126af8676146721fa00924d7e4",
    AVALANCHE_CHAIN_ID: "0xd023d153a0dfa485130ecfde2faa7e612ef94818",
}

TOKEN_DETECTION_CHAIN_IDS = frozenset(SINGLE_CALL_BALANCES_ADDRESSES)


def normalize_chain_id(value: object | None) -> str | None:
    """Return ``value`` as a lower-case ``0x`` prefixed hex string."""

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return hex(value) if value >= 0 else None
    text = str(value).strip().lower()
    if not text:
        return None
    try:
        number = int(text, 16) if text.startswith("0x") else int(text)
    except ValueError:
        return None
    return hex(number) if number >= 0 else None


def is_token_detection_enabled_for_network(chain_id: object | None) -> bool:
    return normalize_chain_id(chain_id) in TOKEN_DETECTION_CHAIN_IDS


def balance_checker_address(chain_id: object | None) -> str | None:
    normalized = normalize_chain_id(chain_id)
    if normalized is None:
        return None
    return SINGLE_CALL_BALANCES_ADDRESSES.get(normalized)


__all__ = [
    "MAINNET_CHAIN_ID",
    "BSC_CHAIN_ID",
    "POLYGON_CHAIN_ID",
    "AVALANCHE_CHAIN_ID",
    "SINGLE_CALL_BALANCES_ADDRESSES",
    "TOKEN_DETECTION_CHAIN_IDS",
    "normalize_chain_id",
    "is_token_detection_enabled_for_network",
    "balance_checker_address",
]
