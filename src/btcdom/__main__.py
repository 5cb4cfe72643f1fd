"""Command-line entry point.

Usage:
    python -m btcdom data/market.json --start 2024-01-01 --end 2024-06-30
    python -m btcdom data/market.json --start 2024-01-01 --end 2024-06-30 \\
        --indicator data/others.json --macro-gate --output results/run.json
    python -m btcdom data/market.json --start 2024-01-01 --end 2024-06-30 --optimize-only

Strategy defaults come from AppSettings (environment variables and .env).
"""

import argparse
import asyncio
import sys
from decimal import Decimal

from btcdom.backtest.runner import run_backtest_cli
from btcdom.config import AppSettings
from btcdom.exceptions import BacktestError, ParameterValidationError
from btcdom.logging import get_logger, setup_logging
from btcdom.models import AllocationPolicy


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="btcdom-backtest",
        description="Backtest the long-BTC / short-alt-basket strategy",
    )
    parser.add_argument("data", help="JSON market data file")
    parser.add_argument("--start", required=True, help="Start date (YYYY-MM-DD)")
    parser.add_argument("--end", required=True, help="End date (YYYY-MM-DD)")
    parser.add_argument("--output", default=None, help="Write the JSON result here")
    parser.add_argument("--indicator", default=None, help="JSON macro-gate indicator series")
    parser.add_argument("--capital", type=Decimal, default=None, help="Initial capital")
    parser.add_argument("--long-ratio", type=Decimal, default=None, help="Long leg share (0-1)")
    parser.add_argument("--max-shorts", type=int, default=None, help="Short basket size")
    parser.add_argument(
        "--allocation",
        choices=[p.value for p in AllocationPolicy],
        default=None,
        help="Short pool allocation policy",
    )
    parser.add_argument("--macro-gate", action="store_true", help="Enable the macro gate")
    parser.add_argument("--no-long", action="store_true", help="Disable the long leg")
    parser.add_argument("--no-short", action="store_true", help="Disable the short basket")
    parser.add_argument(
        "--optimize-only", action="store_true", help="Skip chart series generation"
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)

    settings = AppSettings()
    if args.verbose:
        settings.log_level = "DEBUG"
    if args.optimize_only:
        settings.backtest.optimize_only = True
    if args.macro_gate:
        settings.macro_gate.enabled = True
    setup_logging(settings.log_level)
    logger = get_logger(__name__)

    overrides: dict[str, object] = {}
    if args.capital is not None:
        overrides["initial_capital"] = args.capital
    if args.long_ratio is not None:
        overrides["long_ratio"] = args.long_ratio
    if args.max_shorts is not None:
        overrides["max_short_positions"] = args.max_shorts
    if args.allocation is not None:
        overrides["allocation_policy"] = AllocationPolicy(args.allocation)
    if args.no_long:
        overrides["long_enabled"] = False
    if args.no_short:
        overrides["short_enabled"] = False
    if args.verbose:
        overrides["verbose"] = True

    try:
        asyncio.run(
            run_backtest_cli(
                args.data,
                args.start,
                args.end,
                output_path=args.output,
                indicator_path=args.indicator,
                settings=settings,
                **overrides,
            )
        )
    except ParameterValidationError as e:
        for error in e.errors:
            logger.error("invalid_parameter", error=error)
        return 2
    except (BacktestError, ValueError) as e:
        logger.error("backtest_failed", error=str(e))
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
