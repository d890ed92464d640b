"""Periodic detection of tokens held by an account but not yet tracked."""

from __future__ import annotations

from .balances import MAX_BATCH_SIZE, BalanceBatchFetcher
from .candidates import resolve_candidates
from .controller import DetectTokensController
from .errors import (
    ConfigurationError,
    OracleUnavailable,
    PersistenceError,
    TokenDetectionError,
)
from .reconciler import Reconciler
from .scheduler import DEFAULT_INTERVAL, DetectionScheduler, SchedulerState
from .types import (
    BatchResult,
    DetectedToken,
    DetectionContext,
    DetectionReport,
    KnownTokens,
    TokenDescriptor,
)

__all__ = [
    "DetectTokensController",
    "DetectionScheduler",
    "SchedulerState",
    "BalanceBatchFetcher",
    "Reconciler",
    "resolve_candidates",
    "TokenDescriptor",
    "DetectedToken",
    "KnownTokens",
    "DetectionContext",
    "BatchResult",
    "DetectionReport",
    "TokenDetectionError",
    "ConfigurationError",
    "OracleUnavailable",
    "PersistenceError",
    "MAX_BATCH_SIZE",
    "DEFAULT_INTERVAL",
]
