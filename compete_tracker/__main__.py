"""Main entry point for Compete Tracker."""

import argparse
import asyncio
import json
import sys

from loguru import logger

from .history.models import EntityKind
from .orchestrator.coordinator import build_coordinator
from .orchestrator.scheduler import JobScheduler
from .utils.config import get_config
from .utils.logger import setup_logging


async def run_scheduler():
    """Run the job scheduler."""
    config = get_config()
    setup_logging()

    logger.info("=" * 80)
    logger.info("Compete Tracker - Starting")
    logger.info("=" * 80)

    coordinator = build_coordinator(config)

    if config.seed_store_urls:
        await coordinator.ensure_tracked(EntityKind.COMPETITOR, config.seed_store_urls)

    scheduler = JobScheduler(coordinator, config.model_dump())
    scheduler.configure_jobs()
    scheduler.start()

    logger.info("Scheduler started. Press Ctrl+C to stop.")

    try:
        # Keep running
        while True:
            await asyncio.sleep(1)
    finally:
        logger.info("Shutting down...")
        scheduler.stop()


async def run_refresh(target: str):
    """Refresh tracked entities once.

    Args:
        target: ``competitors``, ``products`` or ``all``
    """
    setup_logging()

    kind = {
        "competitors": EntityKind.COMPETITOR,
        "products": EntityKind.PRODUCT,
        "all": None,
    }[target]

    coordinator = build_coordinator()
    outcomes = await coordinator.refresh_all(kind)

    for outcome in outcomes:
        if outcome.ok:
            logger.info(f"OK     {outcome.kind.value} {outcome.identity}")
        else:
            logger.warning(f"FAILED {outcome.kind.value} {outcome.identity}: {outcome.error_type}: {outcome.error}")

    failed = sum(1 for outcome in outcomes if not outcome.ok)
    logger.info(f"Refresh completed: {len(outcomes) - failed} ok, {failed} failed")
    return failed == 0


async def run_track(kind: str, url: str, competitor: str = None):
    """Start tracking a store or listing and print the stored entity."""
    setup_logging()

    coordinator = build_coordinator()
    entity = await coordinator.track(EntityKind(kind), url, competitor=competitor)
    print(entity.model_dump_json(indent=2))


async def run_funnel(competitor: str, query: str):
    """Explore one ad funnel and print the run."""
    setup_logging()

    coordinator = build_coordinator()
    run = await coordinator.explore_funnel(competitor, query)
    print(json.dumps(run.model_dump(mode="json", by_alias=True), indent=2))


def run_api():
    """Run the FastAPI server."""
    import uvicorn

    from .api.main import app

    config = get_config()
    setup_logging()

    logger.info("=" * 80)
    logger.info("Compete Tracker API - Starting")
    logger.info("=" * 80)

    uvicorn.run(
        app,
        host=config.api.host,
        port=config.api.port,
        log_level="info",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Compete Tracker")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Scheduler command
    subparsers.add_parser("scheduler", help="Run the refresh scheduler")

    # API command
    subparsers.add_parser("api", help="Run the API server")

    # Refresh command
    refresh_parser = subparsers.add_parser("refresh", help="Refresh tracked entities once")
    refresh_parser.add_argument(
        "target",
        nargs="?",
        default="all",
        choices=["competitors", "products", "all"],
        help="What to refresh (default: all)",
    )

    # Track command
    track_parser = subparsers.add_parser("track", help="Start tracking a store or listing")
    track_parser.add_argument("kind", choices=[kind.value for kind in EntityKind], help="Entity kind")
    track_parser.add_argument("url", help="Store URL or listing URL")
    track_parser.add_argument("--competitor", help="Seller name for a product")

    # Funnel command
    funnel_parser = subparsers.add_parser("funnel", help="Explore a competitor's ad funnel")
    funnel_parser.add_argument("competitor", help="Competitor name")
    funnel_parser.add_argument("query", help="Search query that shows the competitor's ad")

    return parser


def main():
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        if args.command == "scheduler":
            asyncio.run(run_scheduler())
        elif args.command == "api":
            run_api()
        elif args.command == "refresh":
            if not asyncio.run(run_refresh(args.target)):
                sys.exit(1)
        elif args.command == "track":
            asyncio.run(run_track(args.kind, args.url, args.competitor))
        elif args.command == "funnel":
            asyncio.run(run_funnel(args.competitor, args.query))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except Exception as e:
        logger.opt(exception=e).error(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
