from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict

from .address import is_valid_address
from .types import TokenDescriptor

log = logging.getLogger(__name__)


def parse_catalog(data: Any) -> Dict[str, TokenDescriptor]:
    """Build a catalog from a token list payload.

    Accepts either an object keyed by address or a list of descriptor
    objects carrying their own ``address``. Entries without a valid address
    are dropped.
    """

    if isinstance(data, dict) and isinstance(data.get("tokens"), list):
        data = data["tokens"]
    if isinstance(data, dict):
        items = list(data.items())
    elif isinstance(data, list):
        items = [(entry.get("address") if isinstance(entry, dict) else None, entry) for entry in data]
    else:
        raise ValueError("token list must be an object or a list")

    catalog: Dict[str, TokenDescriptor] = {}
    dropped = 0
    for key, entry in items:
        if not isinstance(entry, dict):
            dropped += 1
            continue
        descriptor = TokenDescriptor.coerce(entry, address=key)
        address = key or descriptor.address
        if not is_valid_address(address):
            dropped += 1
            continue
        catalog[address] = descriptor
    if dropped:
        log.debug("Dropped %d malformed token list entr(y/ies)", dropped)
    return catalog


def load_catalog(path: str | Path) -> Dict[str, TokenDescriptor]:
    with Path(path).open("r", encoding="utf-8") as fh:
        data = json.load(fh)
    catalog = parse_catalog(data)
    log.info("Loaded %d token(s) from %s", len(catalog), path)
    return catalog


__all__ = ["parse_catalog", "load_catalog"]
