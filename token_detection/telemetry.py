from __future__ import annotations

import asyncio
import logging
from typing import Any, Mapping, Set

import aiohttp

from .logging_utils import warn_once_per

logger = logging.getLogger(__name__)

TOKEN_DETECTED_EVENT = "Token Detected"
WALLET_CATEGORY = "Wallet"
TOKEN_STANDARD_ERC20 = "ERC20"
ASSET_TYPE_TOKEN = "TOKEN"


def safe_track(sink: Any, event: str, category: str, properties: Mapping[str, Any]) -> bool:
    """Call ``sink.track`` and swallow any failure."""

    try:
        sink.track(event, category, dict(properties))
    except Exception as exc:
        warn_once_per(
            5.0,
            f"telemetry:{type(sink).__name__}",
            "telemetry sink failed for %s: %s",
            event,
            exc,
            logger=logger,
        )
        return False
    return True


class LoggingTelemetrySink:
    """Telemetry sink that only writes events to the log."""

    def __init__(self, level: int = logging.INFO) -> None:
        self.level = level

    def track(self, event: str, category: str, properties: Mapping[str, Any]) -> None:
        logger.log(self.level, "telemetry %s/%s %s", category, event, dict(properties))


class HttpTelemetrySink:
    """POST telemetry events as JSON to ``url`` without waiting for the reply."""

    def __init__(
        self,
        url: str,
        *,
        session: aiohttp.ClientSession | None = None,
        timeout: float = 5.0,
    ) -> None:
        self.url = url
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session
        self._owns_session = session is None
        self._tasks: Set[asyncio.Task] = set()

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
            self._owns_session = True
        return self._session

    async def _post(self, payload: dict[str, Any]) -> None:
        try:
            session = await self._get_session()
            async with session.post(self.url, json=payload) as resp:
                resp.raise_for_status()
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # pragma: no cover - network errors
            warn_once_per(
                5.0,
                f"telemetry-http:{self.url}",
                "failed to export telemetry to %s: %s",
                self.url,
                exc,
                logger=logger,
            )

    def track(self, event: str, category: str, properties: Mapping[str, Any]) -> None:
        payload = {"event": event, "category": category, "properties": dict(properties)}
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("no running loop; dropping telemetry event %s", event)
            return
        task = loop.create_task(self._post(payload))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def close(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None


__all__ = [
    "TOKEN_DETECTED_EVENT",
    "WALLET_CATEGORY",
    "TOKEN_STANDARD_ERC20",
    "ASSET_TYPE_TOKEN",
    "safe_track",
    "LoggingTelemetrySink",
    "HttpTelemetrySink",
]
