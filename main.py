"""Command line entry point for the NEPSE collector."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from typing import Any

from nepse_collector.core.config import CollectorConfig
from nepse_collector.pipeline import NepseCollector
from nepse_collector.providers.base import CollectorError
from nepse_collector.storage import (
    is_fresh,
    load_companies,
    write_json,
    write_per_symbol,
)

MODES = ("market", "reports", "securities", "mutual-funds", "all")


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Collect NEPSE market data and mutual-fund NAVs into JSON files.",
    )
    parser.add_argument(
        "--mode",
        choices=MODES,
        default=os.getenv("NEPSE_DEFAULT_MODE", "all"),
        help="Datasets to collect (default: %(default)s).",
    )
    parser.add_argument("--out-dir", help="Directory the JSON files are written to.")
    parser.add_argument("--concurrency", type=int, help="Maximum in-flight per-company requests.")
    parser.add_argument(
        "--type",
        dest="fund_type",
        default="all",
        help="Mutual fund type: all, closed, opened, -1 or 2 (default: %(default)s).",
    )
    parser.add_argument("--length", type=int, help="Mutual fund listing page length.")
    parser.add_argument(
        "--force",
        action="store_true",
        help="Ignore the freshness guard on the mutual fund output.",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Logging level (DEBUG, INFO, WARNING, ...).",
    )
    return parser.parse_args(argv)


async def run(mode: str, collector: NepseCollector, *, fund_type: str, force: bool) -> dict[str, Any]:
    """Collect the datasets for ``mode`` and write them below the configured output dir."""

    config: CollectorConfig = collector.config
    summary: dict[str, Any] = {"mode": mode}

    if mode == "all":
        result = await collector.collect_all(fund_type=fund_type)
        datasets = result.datasets
        write_json(config.market_path, datasets["market"])
        write_per_symbol(config.report_dir, datasets["reports"])
        write_per_symbol(config.security_dir, datasets["securities"])
        summary.update(
            companies=len(datasets["market"]["comp"]["d"]),
            reports=len(datasets["reports"]),
            securities=len(datasets["securities"]),
        )
        if "mutualFunds" in datasets:
            write_json(config.mutual_fund_path, datasets["mutualFunds"])
            summary["funds"] = {
                label: listing["total"] for label, listing in datasets["mutualFunds"]["funds"].items()
            }
        summary["failures"] = result.failures
        return summary

    if mode == "market":
        market = await collector.collect_market()
        write_json(config.market_path, market)
        summary["companies"] = len(market["comp"]["d"])
    elif mode == "reports":
        reports = await collector.collect_reports(load_companies(config.market_path))
        write_per_symbol(config.report_dir, reports)
        summary["reports"] = len(reports)
    elif mode == "securities":
        securities = await collector.collect_securities(load_companies(config.market_path))
        write_per_symbol(config.security_dir, securities)
        summary["securities"] = len(securities)
    elif mode == "mutual-funds":
        if not force and is_fresh(config.mutual_fund_path, config.fresh_hours):
            logging.info(
                "%s is newer than %s hours; skipping (use --force to override).",
                config.mutual_fund_path,
                config.fresh_hours,
            )
            summary["skipped"] = True
            return summary
        funds = await collector.collect_mutual_funds(fund_type)
        write_json(config.mutual_fund_path, funds)
        summary["funds"] = {label: listing["total"] for label, listing in funds["funds"].items()}
    summary["failures"] = list(collector.failures)
    return summary


async def _run_collector(args: argparse.Namespace, overrides: dict[str, Any]) -> dict[str, Any]:
    async with NepseCollector.from_environment(**overrides) as collector:
        return await run(args.mode, collector, fund_type=args.fund_type, force=args.force)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging(args.log_level)

    overrides: dict[str, Any] = {
        "output_dir": args.out_dir,
        "concurrency": args.concurrency,
        "page_length": args.length,
    }

    try:
        summary = asyncio.run(_run_collector(args, overrides))
    except (CollectorError, ValueError) as exc:
        logging.exception("Collection failed")
        print(json.dumps({"status": "error", "message": str(exc)}), file=sys.stderr)
        return 1

    print(json.dumps({"status": "ok", **summary}, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
