"""Command line entrypoint for the Solana wallet mirror."""

from __future__ import annotations

import argparse
import json
import sys
import time
from contextlib import contextmanager
from typing import Any, Optional, Sequence

from .config.settings import get_app_config
from .exceptions import MirrorError
from .monitoring import bootstrap_observability
from .monitoring.logger import get_logger
from .monitoring.metrics import METRICS
from .service import WalletService

logger = get_logger(__name__)


@contextmanager
def performance_monitor(operation_name: str):
    start_time = time.time()
    try:
        yield
    finally:
        METRICS.observe(f"cli.{operation_name}.duration_seconds", time.time() - start_time)
        METRICS.increment(f"cli.{operation_name}.calls_total")


def _to_jsonable(result: Any) -> Any:
    if isinstance(result, list):
        return [_to_jsonable(item) for item in result]
    if hasattr(result, "to_dict"):
        return result.to_dict()
    return result


def _run(service: WalletService, args: argparse.Namespace) -> Any:
    if args.command == "chart":
        return service.get_chart(args.address, args.timeframe, detailed=args.detailed)
    if args.command == "accounts":
        return service.get_accounts(args.address)
    if args.command == "balances":
        return service.get_balances(args.address, include_positions=not args.no_positions)
    if args.command == "position":
        return service.get_position(args.position, args.pool)
    history = service.get_transactions(args.address, args.page)
    return {
        "transactions": [tx.to_dict() for tx in history.transactions],
        "dropped": history.dropped,
    }


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Mirror a Solana wallet's balances and history")
    subparsers = parser.add_subparsers(dest="command", required=True)

    chart = subparsers.add_parser("chart", help="USD balance history")
    chart.add_argument("address")
    chart.add_argument("timeframe", nargs="?", default="30d", help="Range and unit, e.g. 30d or 12h")
    chart.add_argument("--detailed", action="store_true", help="Include per-mint balances and prices")

    accounts = subparsers.add_parser("accounts", help="Current token accounts")
    accounts.add_argument("address")

    balances = subparsers.add_parser("balances", help="Token accounts and Raydium positions")
    balances.add_argument("address")
    balances.add_argument("--no-positions", action="store_true", help="Skip position valuation")

    position = subparsers.add_parser("position", help="Value one Raydium CLMM position")
    position.add_argument("position")
    position.add_argument("--pool", default=None, help="Pool address (defaults to the position's pool)")

    transactions = subparsers.add_parser("transactions", help="Parsed transaction history")
    transactions.add_argument("address")
    transactions.add_argument("--page", default=None, help="Signature slice as start-end")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(list(argv) if argv is not None else None)
    config = get_app_config()
    bootstrap_observability(config)
    service = WalletService(config)
    try:
        with performance_monitor(args.command):
            result = _run(service, args)
    except MirrorError as exc:
        logger.error("%s failed: %s", args.command, exc)
        json.dump({"error": exc.kind.value, "status": exc.status_code, "message": str(exc)}, sys.stderr)
        sys.stderr.write("\n")
        return 1
    json.dump(_to_jsonable(result), sys.stdout, indent=2)
    sys.stdout.write("\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
