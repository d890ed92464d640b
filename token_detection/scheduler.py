"""Repeating timer that drives the detection pipeline."""

from __future__ import annotations

import asyncio
import enum
import logging
from typing import Any, Awaitable, Callable, Optional, Set

log = logging.getLogger(__name__)

MINUTE = 60.0
DEFAULT_INTERVAL = 3 * MINUTE


class SchedulerState(str, enum.Enum):
    IDLE = "idle"
    ARMED = "armed"
    RUNNING = "running"


class DetectionScheduler:
    """Run ``job`` every ``interval`` seconds while ``gate`` allows it.

    Only one ``job`` execution is in flight at any time; timer ticks arriving
    while a run is in progress are dropped and the next scheduled tick
    retries. A :meth:`restart` during a run is deferred until that run ends.
    The timer is an asyncio task, so the scheduler must be armed from inside a
    running event loop.
    """

    def __init__(
        self,
        job: Callable[[], Awaitable[Any]],
        *,
        gate: Callable[[], bool],
        interval: Optional[float] = DEFAULT_INTERVAL,
        default_interval: float = DEFAULT_INTERVAL,
        name: str = "token_detection",
    ) -> None:
        self._job = job
        self._gate = gate
        self.name = name
        self.default_interval = default_interval
        self.interval: Optional[float] = None
        self._timer: Optional[asyncio.Task] = None
        self._running = False
        self._rerun = False
        self._runs: Set[asyncio.Task] = set()
        self.last_error: Optional[BaseException] = None
        self.last_result: Any = None
        self.ticks = 0
        self.dropped = 0
        if interval:
            self.set_interval(interval)

    @property
    def state(self) -> SchedulerState:
        if self._running:
            return SchedulerState.RUNNING
        if self._timer is not None and not self._timer.done():
            return SchedulerState.ARMED
        return SchedulerState.IDLE

    def set_interval(self, interval: Optional[float]) -> None:
        """Replace the repeating timer; a falsy ``interval`` leaves it idle."""

        self._cancel_timer()
        if not interval or interval <= 0:
            self.interval = None
            return
        loop = asyncio.get_running_loop()
        self.interval = float(interval)
        self._timer = loop.create_task(self._timer_loop(self.interval), name=f"{self.name}_timer")

    def restart(self) -> Optional[asyncio.Task]:
        """Run the job now and re-arm the timer at the default interval."""

        if not self._gate():
            log.debug("%s restart ignored; activity gate closed", self.name)
            return None
        self.set_interval(self.default_interval)
        if self._running:
            self._rerun = True
            log.debug("%s restart deferred until the current run finishes", self.name)
            return None
        return self._spawn()

    async def tick(self) -> bool:
        """Run the job once unless the gate is closed or a run is in flight."""

        self.ticks += 1
        if not self._gate():
            log.debug("%s tick skipped; activity gate closed", self.name)
            return False
        if self._running:
            self.dropped += 1
            log.debug("%s tick dropped; previous run still in flight", self.name)
            return False
        self._running = True
        try:
            self.last_result = await self._job()
            self.last_error = None
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.last_error = exc
            log.exception("%s run failed: %s", self.name, exc)
        finally:
            self._running = False
        if self._rerun:
            self._rerun = False
            self._spawn()
        return True

    async def join(self) -> None:
        """Wait for every spawned run to finish."""

        while self._runs:
            await asyncio.gather(*list(self._runs), return_exceptions=True)

    async def stop(self) -> None:
        self._cancel_timer()
        self._rerun = False
        self.interval = None
        await self.join()

    def _spawn(self) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(self.tick(), name=f"{self.name}_run")
        self._runs.add(task)
        task.add_done_callback(self._runs.discard)
        return task

    async def _timer_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            self._spawn()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None


__all__ = ["MINUTE", "DEFAULT_INTERVAL", "SchedulerState", "DetectionScheduler"]
