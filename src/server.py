"""Reconciliation sweep runner.

Runs the reconciliation sweep on a fixed interval: stale payments are
re-queried or expired, abandoned orders cancelled, stranded stock released
and failed webhook receipts re-applied.

Usage:
    python src/server.py                # Sweep every GROCERY_SWEEP_INTERVAL_SECONDS
    python src/server.py --interval 30  # Sweep every 30 seconds
    python src/server.py --once         # Single sweep, then exit
"""

import argparse
import asyncio

import structlog

from grocery.config import get_settings
from grocery.domain import grocery
from grocery.reconciliation.worker import reconciliation_worker

logger = structlog.get_logger(__name__)


def sweep_once() -> dict:
    with grocery.domain_context():
        return reconciliation_worker.sweep().as_dict()


async def run(interval: float, once: bool = False) -> None:
    while True:
        try:
            # Sweeps hold per-key locks; keep them off the event loop thread
            report = await asyncio.to_thread(sweep_once)
            if report["errors"]:
                logger.warning("Sweep finished with errors", errors=len(report["errors"]))
        except Exception:
            logger.exception("Sweep crashed")
            if once:
                raise

        if once:
            return
        await asyncio.sleep(interval)


def main():
    parser = argparse.ArgumentParser(description="Fresh Grocery reconciliation sweep runner")
    parser.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Seconds between sweeps (default: GROCERY_SWEEP_INTERVAL_SECONDS)",
    )
    parser.add_argument("--once", action="store_true", help="Run a single sweep and exit")
    args = parser.parse_args()

    grocery.init()
    interval = args.interval if args.interval is not None else get_settings().sweep_interval_seconds
    logger.info("Sweep runner starting", interval=interval, once=args.once)

    asyncio.run(run(interval, once=args.once))


if __name__ == "__main__":
    main()
