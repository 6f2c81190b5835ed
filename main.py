import argparse
import logging
import sys
from datetime import date

from stock_planner import settings
from stock_planner.data_handler import AlertStateStore, JsonDocumentStore, RebalanceLedger
from stock_planner.errors import PlannerError, PlatformError
from stock_planner.logger import setup_logger
from stock_planner.platform import ShopifyClient
from stock_planner.rebalancer import VariantRebalancer
from stock_planner.refresh import RefreshCycle
from stock_planner.schemas import BurnRatePeriod
from stock_planner.sources import LiveSources

logger = logging.getLogger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run one inventory planning and alerting cycle.")
    parser.add_argument(
        "--test-mode",
        action="store_true",
        help="Run everything but never post notifications or write alert state.",
    )
    parser.add_argument(
        "--skip-rebalance",
        action="store_true",
        help="Do not touch multi-variant splits this cycle.",
    )
    parser.add_argument("--target-days", type=float, help="Days of cover the Need column aims for.")
    parser.add_argument(
        "--burn-period",
        choices=[p.value for p in BurnRatePeriod],
        help="Sales window used for the planning burn rate.",
    )
    parser.add_argument(
        "--as-of",
        type=date.fromisoformat,
        help="Plan as if today were this date (YYYY-MM-DD).",
    )
    return parser.parse_args(argv)


def run_process(args: argparse.Namespace) -> int:
    """Builds the live collaborators and runs one refresh cycle."""
    config = settings.load_planning_config(
        target_days=args.target_days,
        burn_rate_period=BurnRatePeriod(args.burn_period) if args.burn_period else None,
    )
    logger.info(
        f"Config v{config.version}: target {config.target_days:g}d, burn {config.burn_rate_period.value}, "
        f"{len(config.allocations)} variant allocations."
    )

    try:
        client = ShopifyClient()
    except PlatformError as e:
        logger.error(f"❌ {e}")
        return 1

    registry = JsonDocumentStore(settings.DATA_DIR)
    sources = LiveSources(client, registry)

    rebalancer = None
    if args.skip_rebalance:
        logger.info("Rebalancing disabled for this run.")
    elif config.allocations:
        try:
            location_ids = sources.fetch_location_ids()
        except PlatformError as e:
            logger.error(f"❌ Could not resolve locations, skipping rebalance: {e}")
        else:
            rebalancer = VariantRebalancer(client, location_ids, ledger=RebalanceLedger(registry))

    cycle = RefreshCycle(
        sources,
        config,
        AlertStateStore(registry),
        rebalancer=rebalancer,
        today=args.as_of,
        test_mode=args.test_mode,
    )

    try:
        report = cycle.run()
    except PlannerError as e:
        logger.error(f"❌ Refresh cycle aborted: {e}")
        return 1

    if report.degraded_sources:
        logger.warning(f"⚠️ Cycle ran without: {', '.join(report.degraded_sources)}")
    return 0


if __name__ == "__main__":
    args = parse_args()
    setup_logger(log_level=settings.LOG_LEVEL)
    if args.test_mode:
        logger.info("🧪 Running in TEST MODE")
    sys.exit(run_process(args))
