"""Run token detection for a single account from the command line."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Any, Sequence

from .catalog import load_catalog
from .config import DetectionSettings, load_settings
from .controller import DetectTokensController
from .errors import ConfigurationError
from .logging_utils import setup_stdout_logging
from .rpc import SingleCallBalanceOracle
from .stores import InMemoryTokensStore, ObservableStore, StaticTokenList
from .telemetry import HttpTelemetrySink, LoggingTelemetrySink
from .types import DetectionReport

log = logging.getLogger("token_detection")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="token_detection",
        description="Poll token balances for an account and report newly detected tokens.",
    )
    parser.add_argument("--config", help="TOML settings file")
    parser.add_argument("--address", help="account address to scan")
    parser.add_argument("--catalog", help="token list JSON file")
    parser.add_argument("--rpc-url", help="JSON-RPC endpoint")
    parser.add_argument("--chain-id", help="chain id of the RPC endpoint")
    parser.add_argument("--interval", type=float, help="polling interval in seconds")
    parser.add_argument("--once", action="store_true", help="run a single detection and exit")
    parser.add_argument("--log-json", action="store_true", default=None, help="emit JSON logs")
    parser.add_argument("--log-level", help="logging level")
    return parser


def _summarize(report: DetectionReport) -> str:
    if report.skipped:
        return f"skipped: {report.skipped}"
    lines = [
        f"account {report.account}: {report.candidates} candidate(s), "
        f"{report.batches} batch(es), {len(report.detected)} detected"
    ]
    for token in report.detected:
        lines.append(f"  {token.symbol} {token.address}")
    if report.failure is not None:
        lines.append(f"  stopped early: {report.failure}")
    if report.superseded:
        lines.append("  stopped early: selected account changed")
    return "\n".join(lines)


async def run(settings: DetectionSettings, *, once: bool) -> int:
    if settings.rpc_url is None:
        raise ConfigurationError("rpc_url is required")
    if settings.selected_address is None:
        raise ConfigurationError("selected_address is required")
    if settings.catalog_path is None:
        raise ConfigurationError("catalog_path is required")

    oracle = SingleCallBalanceOracle(
        str(settings.rpc_url),
        chain_id=settings.chain_id,
        contract_address=settings.balance_checker_address,
        timeout=settings.rpc_timeout,
    )
    telemetry: Any
    if settings.metrics_url is not None:
        telemetry = HttpTelemetrySink(str(settings.metrics_url))
    else:
        telemetry = LoggingTelemetrySink()

    preferences = ObservableStore(
        {"selected_address": settings.selected_address, "use_token_detection": True}
    )
    network = ObservableStore({"chain_id": settings.chain_id})
    session = ObservableStore({"is_unlocked": False})
    tokens_store = InMemoryTokensStore()
    token_list = StaticTokenList(load_catalog(settings.catalog_path))

    controller = DetectTokensController(
        preferences=preferences,
        network=network,
        session=session,
        token_list=token_list,
        tokens_store=tokens_store,
        balance_oracle=oracle,
        telemetry=telemetry,
        interval=None if once else settings.interval,
        batch_size=settings.batch_size,
        view_active=True,
    )
    try:
        if once:
            session.update_state(is_unlocked=True)
            await controller.scheduler.join()
            report = controller.last_report
            if report is None:
                report = await controller.detect_new_tokens()
            print(_summarize(report))
            return 1 if controller.scheduler.last_error is not None else 0
        session.update_state(is_unlocked=True)
        log.info(
            "Token detection running for %s every %.0fs",
            settings.selected_address,
            settings.interval,
        )
        await asyncio.Event().wait()
        return 0
    finally:
        await controller.close()
        await oracle.close()
        if isinstance(telemetry, HttpTelemetrySink):
            await telemetry.close()


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        settings = load_settings(
            args.config,
            selected_address=args.address,
            catalog_path=args.catalog,
            rpc_url=args.rpc_url,
            chain_id=args.chain_id,
            interval=args.interval,
            log_json=args.log_json,
            log_level=args.log_level,
        )
    except ConfigurationError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2

    setup_stdout_logging(level=settings.log_level, json_format=settings.log_json)
    try:
        return asyncio.run(run(settings, once=args.once))
    except ConfigurationError as exc:
        log.error("%s", exc)
        return 2
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    raise SystemExit(main())
