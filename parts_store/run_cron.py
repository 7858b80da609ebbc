#!/usr/bin/env python3
"""
Parts Store - Standalone Reservation Sweep Runner

Runs the reservation reclaim scheduler as its own service, for deployments
where the API runs with RESERVATION_SWEEP_ENABLED=false.

    python -m parts_store.run_cron          # loop every RESERVATION_SWEEP_INTERVAL_MINUTES
    python -m parts_store.run_cron --once   # single sweep, exit code 1 on failure
"""
import argparse
import asyncio
import logging
import os
import signal
import sys

from dotenv import load_dotenv

load_dotenv()

# Setup logging first
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S"
)
logger = logging.getLogger(__name__)

# Validate required environment variables
REQUIRED_VARS = ["DATABASE_URL"]

# Graceful shutdown flag
_shutdown = False


def handle_shutdown(signum, frame):
    """Handle shutdown signals gracefully."""
    global _shutdown
    logger.info(f"Received signal {signum}, initiating graceful shutdown...")
    _shutdown = True


async def main(once: bool = False) -> int:
    """Main entry point for cron service."""
    # Import after env validation
    from parts_store.core.config import settings
    from parts_store.core.utils import utcnow
    from parts_store.jobs.reservation_reclaim import reclaim_scheduler

    logger.info("=" * 60)
    logger.info(f"{settings.APP_NAME} Reservation Sweep Service")
    logger.info("=" * 60)
    logger.info(f"Started at: {utcnow().isoformat()}")
    logger.info(f"Interval: {settings.RESERVATION_SWEEP_INTERVAL_MINUTES} minutes")

    if once:
        try:
            result = await reclaim_scheduler.run_once()
        except Exception as e:
            logger.error(f"Sweep failed: {e}")
            return 1
        logger.info(f"Sweep complete: released {result.released_count} reservations")
        return 0

    signal.signal(signal.SIGTERM, handle_shutdown)
    signal.signal(signal.SIGINT, handle_shutdown)

    try:
        await reclaim_scheduler.start()

        logger.info("Sweep service running. Press Ctrl+C to stop.")
        while not _shutdown:
            await asyncio.sleep(1)
    finally:
        logger.info("Stopping reservation reclaim scheduler...")
        await reclaim_scheduler.stop()
        logger.info(f"Sweep service stopped. Heartbeat: {reclaim_scheduler.heartbeat}")

    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Sweep expired stock reservations")
    parser.add_argument("--once", action="store_true", help="Run a single sweep and exit")
    args = parser.parse_args()

    missing = [var for var in REQUIRED_VARS if not os.getenv(var)]
    if missing:
        logger.error(f"Missing required environment variables: {missing}")
        sys.exit(1)

    try:
        sys.exit(asyncio.run(main(once=args.once)))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
