"""
Settlement background worker.

Runs the daily settlement for every active merchant at a scheduled hour
(e.g., 2 AM UTC). The core itself never schedules anything; this loop is
the only place that does.

Usage:
    commerce-settlement-worker --service-factory myapp.wiring:settlement_service --hour 2
"""
import asyncio
import importlib
import signal
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Optional

import structlog

from commerce_core.config import get_settings
from commerce_core.core.reconciliation import SettlementRunSummary, SettlementService
from commerce_core.domain.value_objects import utc_now
from commerce_core.monitoring.logging import setup_logging

logger = structlog.get_logger(__name__)


async def run_daily_settlement(service: SettlementService) -> SettlementRunSummary:
    """Run today's settlement for every active merchant."""
    logger.info("daily_settlement_job_started")

    try:
        summary = await service.run_daily_settlement()
    except Exception as e:
        logger.error("daily_settlement_job_failed", error=str(e))
        raise

    if summary.failed or any(status in summary.statuses for status in ("SURPLUS", "DEFICIT")):
        logger.warning(
            "settlement_discrepancies_detected",
            settlement_date=summary.settlement_date.isoformat(),
            statuses=summary.statuses,
            failed=summary.failed,
        )

    logger.info(
        "daily_settlement_job_completed",
        settlement_date=summary.settlement_date.isoformat(),
        settled=summary.settled,
        failed=summary.failed,
    )
    return summary


def calculate_next_run_time(target_hour: int, now: Optional[datetime] = None) -> float:
    """
    Calculate seconds until next scheduled run.

    Args:
        target_hour: Hour of day to run (24-hour format, UTC)
        now: Current time (default: now, UTC)

    Returns:
        float: Seconds until next run
    """
    now = now or utc_now()
    next_run = now.replace(hour=target_hour, minute=0, second=0, microsecond=0)

    # If we've passed today's run time, schedule for tomorrow
    if now >= next_run:
        next_run += timedelta(days=1)

    seconds_until = (next_run - now).total_seconds()

    logger.info(
        "settlement_next_run_scheduled",
        next_run=next_run.isoformat(),
        seconds_until=seconds_until,
    )

    return seconds_until


async def start_settlement_worker(
    service: SettlementService,
    target_hour: Optional[int] = None,
    max_runs: Optional[int] = None,
    install_signal_handlers: bool = True,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> int:
    """
    Start the settlement worker.

    Runs daily at the specified hour until SIGINT/SIGTERM.

    Args:
        service: Settlement service to run
        target_hour: Hour of day to run (default: settings.settlement_hour)
        max_runs: Stop after this many runs (None: run forever)
        install_signal_handlers: Register SIGINT/SIGTERM (main thread only)
        sleep: Sleep function (tests replace it)

    Returns:
        int: Number of runs executed
    """
    target_hour = target_hour if target_hour is not None else get_settings().settlement_hour

    logger.info("settlement_worker_starting", target_hour=target_hour)

    running = True
    runs = 0

    def signal_handler(sig: int, frame: Any) -> None:
        nonlocal running
        logger.info("settlement_worker_shutdown_signal_received", signal=sig)
        running = False

    if install_signal_handlers:
        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

    try:
        while running and (max_runs is None or runs < max_runs):
            seconds_until = calculate_next_run_time(target_hour)

            # Wait until next run time (with periodic checks for shutdown signal)
            while seconds_until > 0 and running:
                sleep_time = min(seconds_until, 60)  # Check every minute
                await sleep(sleep_time)
                seconds_until -= sleep_time

            if not running:
                break

            try:
                await run_daily_settlement(service)
            except Exception as e:
                # Keep running; tomorrow's run may succeed
                logger.error("settlement_execution_error", error=str(e))
            runs += 1

    finally:
        logger.info("settlement_worker_stopped", runs=runs)

    return runs


def load_service_factory(path: str) -> Callable[[], SettlementService]:
    """
    Resolve a ``module:callable`` path to a settlement service factory.

    The factory takes no arguments and returns the SettlementService wired
    to the deployment's stores.

    Raises:
        ValueError: path is not ``module:callable`` or does not resolve to a callable
    """
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"Service factory must look like 'module:callable', got {path!r}")

    factory = importlib.import_module(module_name)
    for part in attr.split("."):
        try:
            factory = getattr(factory, part)
        except AttributeError:
            raise ValueError(f"{module_name!r} has no attribute {attr!r}") from None

    if not callable(factory):
        raise ValueError(f"Service factory {path!r} is not callable")
    return factory


def main(argv: Optional[list[str]] = None) -> None:
    """Command-line entry point."""
    import argparse

    parser = argparse.ArgumentParser(description="Settlement worker")
    parser.add_argument(
        "--service-factory",
        required=True,
        help="module:callable returning the SettlementService to run",
    )
    parser.add_argument(
        "--hour", type=int, default=None, help="Hour of day to run settlement (0-23, UTC)"
    )
    args = parser.parse_args(argv)

    setup_logging()
    service = load_service_factory(args.service_factory)()
    logger.info("settlement_service_loaded", factory=args.service_factory)
    asyncio.run(start_settlement_worker(service, target_hour=args.hour))


if __name__ == "__main__":
    main()
