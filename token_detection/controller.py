"""Detect tokens an account holds but has not added yet.

``DetectTokensController`` mirrors the external stores it depends on into a
private :class:`DetectionContext` snapshot. Store notifications are turned
into small message objects and applied by :meth:`DetectTokensController.dispatch`,
which decides whether the detection pipeline has to be restarted.

Each pipeline run resolves the unknown catalog addresses, queries their
balances in sequential batches and hands every non-zero result to the
:class:`Reconciler`.
"""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses
import logging
from dataclasses import dataclass
from typing import Any, List, Mapping, Optional, Union

from .address import addresses_equal
from .balances import MAX_BATCH_SIZE, BalanceBatchFetcher
from .candidates import resolve_candidates
from .errors import ConfigurationError
from .network import normalize_chain_id
from .reconciler import Reconciler
from .scheduler import DEFAULT_INTERVAL, DetectionScheduler
from .stores import (
    BalanceOracle,
    ObservableState,
    TelemetrySink,
    TokenListSource,
    TokensStore,
    Unsubscribe,
)
from .types import DetectionContext, DetectionReport, KnownTokens

log = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PreferencesChanged:
    selected_address: Optional[str]
    use_token_detection: bool


@dataclass(frozen=True, slots=True)
class KnownTokensChanged:
    known: KnownTokens


@dataclass(frozen=True, slots=True)
class SessionChanged:
    unlocked: bool


@dataclass(frozen=True, slots=True)
class NetworkChanged:
    chain_id: Optional[str]


@dataclass(frozen=True, slots=True)
class ViewActivityChanged:
    active: bool


Message = Union[
    PreferencesChanged,
    KnownTokensChanged,
    SessionChanged,
    NetworkChanged,
    ViewActivityChanged,
]


def _preferences_message(state: Mapping[str, Any]) -> PreferencesChanged:
    return PreferencesChanged(
        selected_address=state.get("selected_address") or None,
        use_token_detection=bool(state.get("use_token_detection")),
    )


def _session_message(state: Mapping[str, Any]) -> SessionChanged:
    return SessionChanged(unlocked=bool(state.get("is_unlocked")))


def _network_message(state: Mapping[str, Any]) -> NetworkChanged:
    return NetworkChanged(chain_id=normalize_chain_id(state.get("chain_id")))


class DetectTokensController:
    """Poll for balances of catalog tokens the selected account does not track."""

    def __init__(
        self,
        *,
        preferences: ObservableState,
        network: ObservableState,
        session: ObservableState,
        token_list: TokenListSource,
        tokens_store: TokensStore,
        balance_oracle: BalanceOracle,
        telemetry: TelemetrySink,
        interval: Optional[float] = DEFAULT_INTERVAL,
        batch_size: int = MAX_BATCH_SIZE,
        view_active: bool = False,
    ) -> None:
        required = {
            "preferences": preferences,
            "network": network,
            "session": session,
            "token_list": token_list,
            "tokens_store": tokens_store,
            "balance_oracle": balance_oracle,
            "telemetry": telemetry,
        }
        missing = [name for name, value in required.items() if value is None]
        if missing:
            raise ConfigurationError(
                f"DetectTokensController missing required collaborator(s): {', '.join(missing)}",
                missing=missing,
            )

        self._preferences = preferences
        self._network = network
        self._session = session
        self._token_list = token_list
        self._tokens_store = tokens_store
        self._fetcher = BalanceBatchFetcher(balance_oracle, batch_size=batch_size)
        self._reconciler = Reconciler(tokens_store, telemetry)

        prefs = _preferences_message(preferences.get_state())
        self._context = DetectionContext(
            selected_address=prefs.selected_address,
            use_token_detection=prefs.use_token_detection,
            chain_id=_network_message(network.get_state()).chain_id,
            session_unlocked=_session_message(session.get_state()).unlocked,
            view_active=bool(view_active),
        )
        self._known = KnownTokens.from_state(tokens_store.get_state())
        self.last_report: Optional[DetectionReport] = None

        self.scheduler = DetectionScheduler(
            self.detect_new_tokens,
            gate=lambda: self.is_active,
            interval=interval,
            default_interval=interval or DEFAULT_INTERVAL,
        )
        self._unsubscribers: List[Unsubscribe] = [
            preferences.subscribe(self._on_preferences),
            tokens_store.subscribe(self._on_tokens),
            session.subscribe(self._on_session),
            network.subscribe(self._on_network),
        ]

    @property
    def context(self) -> DetectionContext:
        return self._context

    @property
    def known_tokens(self) -> KnownTokens:
        return self._known

    @property
    def is_active(self) -> bool:
        return self._context.is_active

    def set_view_active(self, active: bool) -> None:
        self.dispatch(ViewActivityChanged(active=bool(active)))

    def dispatch(self, message: Message) -> None:
        """Apply an inbound state change to the local snapshot."""

        ctx = self._context
        if isinstance(message, PreferencesChanged):
            if (
                ctx.selected_address == message.selected_address
                and ctx.use_token_detection == message.use_token_detection
            ):
                return
            self._context = dataclasses.replace(
                ctx,
                selected_address=message.selected_address,
                use_token_detection=message.use_token_detection,
            )
            self.restart_detection()
        elif isinstance(message, KnownTokensChanged):
            self._known = message.known
        elif isinstance(message, SessionChanged):
            if ctx.session_unlocked == message.unlocked:
                return
            self._context = dataclasses.replace(ctx, session_unlocked=message.unlocked)
            if message.unlocked:
                self.restart_detection()
        elif isinstance(message, NetworkChanged):
            self._context = dataclasses.replace(ctx, chain_id=message.chain_id)
        elif isinstance(message, ViewActivityChanged):
            self._context = dataclasses.replace(ctx, view_active=message.active)
        else:
            raise TypeError(f"unsupported message: {message!r}")

    def restart_detection(self) -> Optional[asyncio.Task]:
        """Run detection now and restart the polling period.

        Used after an account switch or when the session is unlocked.
        """

        if not (self.is_active and self._context.selected_address):
            return None
        return self.scheduler.restart()

    async def detect_new_tokens(self) -> DetectionReport:
        """Check the selected account's balance for every unknown catalog token."""

        ctx = self._context
        report = DetectionReport(account=ctx.selected_address)
        if not ctx.is_active:
            report.skipped = "inactive"
        elif not ctx.use_token_detection:
            report.skipped = "disabled"
        elif not ctx.detection_enabled_for_network:
            report.skipped = "unsupported-network"
        elif not ctx.selected_address:
            report.skipped = "no-account"
        if report.skipped is not None:
            log.debug("Token detection skipped: %s", report.skipped)
            self.last_report = report
            return report

        account = ctx.selected_address
        catalog = self._token_list.catalog()
        candidates = resolve_candidates(catalog, self._known)
        report.candidates = len(candidates)

        def _same_account() -> bool:
            return addresses_equal(self._context.selected_address, account)

        self.last_report = report
        batches = self._fetcher.iter_batches(account, candidates)
        async with contextlib.aclosing(batches):
            async for batch in batches:
                report.batches += 1
                if not batch.ok:
                    report.failure = batch.error
                    break
                detected = await self._reconciler.reconcile(
                    batch, catalog, commit_guard=_same_account
                )
                report.detected.extend(detected)
                if not _same_account():
                    if not detected:
                        report.discarded += len(batch.balances)
                    report.superseded = True
                    log.info(
                        "Selected account changed from %s; stopping its token detection run",
                        account,
                    )
                    break
        log.debug(
            "Token detection for %s checked %d candidate(s) in %d batch(es), found %d",
            account,
            report.candidates,
            report.batches,
            len(report.detected),
        )
        return report

    async def close(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        await self.scheduler.stop()

    def _on_preferences(self, state: Mapping[str, Any]) -> None:
        self.dispatch(_preferences_message(state))

    def _on_tokens(self, state: Mapping[str, Any]) -> None:
        self.dispatch(KnownTokensChanged(KnownTokens.from_state(state)))

    def _on_session(self, state: Mapping[str, Any]) -> None:
        self.dispatch(_session_message(state))

    def _on_network(self, state: Mapping[str, Any]) -> None:
        self.dispatch(_network_message(state))


__all__ = [
    "DetectTokensController",
    "PreferencesChanged",
    "KnownTokensChanged",
    "SessionChanged",
    "NetworkChanged",
    "ViewActivityChanged",
]
