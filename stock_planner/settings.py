import json
import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import ValidationError

from .schemas import (
    AlertThresholds,
    BurnRatePeriod,
    PlanningConfig,
    UnknownEtaPolicy,
    VariantAllocation,
)

logger = logging.getLogger(__name__)

# --- Base Directory ---
BASE_DIR = Path(__file__).resolve().parent.parent

# --- Load Environment Variables ---
load_dotenv(BASE_DIR / ".env")

# --- Path Configuration ---
DATA_DIR = BASE_DIR / os.getenv("DATA_DIR", "data")
OUTPUT_DIR = BASE_DIR / os.getenv("OUTPUT_DIR", "output")
LOG_DIR = BASE_DIR / os.getenv("LOG_DIR", "logs")
VARIANT_ALLOCATIONS_FILE = BASE_DIR / os.getenv(
    "VARIANT_ALLOCATIONS_FILE", "config/variant_allocations.json"
)

PLANNING_FILENAME_BASE = os.getenv("PLANNING_FILENAME", "planning_report")
SAVE_JSON_OUTPUT = os.getenv("SAVE_JSON_OUTPUT", "false").lower() == "true"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# --- Commerce Platform ---
SHOPIFY_SHOP_DOMAIN = os.getenv("SHOPIFY_SHOP_DOMAIN")
SHOPIFY_ACCESS_TOKEN = os.getenv("SHOPIFY_ACCESS_TOKEN")
SHOPIFY_API_VERSION = os.getenv("SHOPIFY_API_VERSION", "2024-10")

# --- Webhook ---
SLACK_WEBHOOK_URL = os.getenv("SLACK_WEBHOOK_URL")

# --- Cycle Limits ---
CYCLE_BUDGET_SECONDS = float(os.getenv("CYCLE_BUDGET_SECONDS", "55"))
REBALANCE_SETTLE_SECONDS = float(os.getenv("REBALANCE_SETTLE_SECONDS", "2"))

# --- Locations ---
# Platform location name -> name used everywhere else in the planner.
LOCATION_DISPLAY_NAMES = {
    "New LA Office": "LA Office",
    "DTLA Warehouse": "DTLA WH",
    "ShipBobFulfillment-343151": "ShipBob",
    "China Warehouse": "China WH",
}

LOCATION_ORDER = [
    "LA Office",
    "DTLA WH",
    "ShipBob",
    "China WH",
]

# The two "near" locations that make up the LA area pool.
LA_AREA_LOCATIONS = ["LA Office", "DTLA WH"]
CHINA_LOCATION = os.getenv("CHINA_LOCATION", "China WH")

# Only products carrying this tag are part of the snapshot.
INVENTORIED_TAG = "inventoried"


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    return float(raw) if raw not in (None, "") else default


def load_planning_config(**overrides) -> PlanningConfig:
    """
    Builds the planning configuration from the environment.
    Keyword overrides win over env values (e.g. target_days from the CLI).
    """
    thresholds = AlertThresholds(
        critical_threshold=_env_float("ALERT_CRITICAL_THRESHOLD", 50),
        low_threshold=_env_float("ALERT_LOW_THRESHOLD", 200),
        runway_threshold=_env_float("ALERT_RUNWAY_THRESHOLD", 90),
    )
    values = {
        "thresholds": thresholds,
        "target_days": _env_float("TARGET_DAYS", 30),
        "burn_rate_period": BurnRatePeriod(os.getenv("BURN_RATE_PERIOD", "21d")),
        "unknown_eta_policy": UnknownEtaPolicy(
            os.getenv("UNKNOWN_SEA_ETA_POLICY", "omit")
        ),
        "buffer_without_sea": os.getenv("BUFFER_WITHOUT_SEA", "false").lower() == "true",
        "la_area_locations": LA_AREA_LOCATIONS,
        "china_location": CHINA_LOCATION,
        "allocations": load_variant_allocations(VARIANT_ALLOCATIONS_FILE),
    }
    values.update({k: v for k, v in overrides.items() if v is not None})
    return PlanningConfig(**values)


def load_variant_allocations(path: Path) -> list[VariantAllocation]:
    """
    Reads the multi-variant allocation table. A bad entry is logged and dropped
    so it never blocks the rest of the table.
    """
    if not path.exists():
        logger.info(f"No variant allocation table at {path}, rebalancing disabled.")
        return []

    try:
        with open(path, encoding="utf-8") as f:
            raw = json.load(f)
    except (OSError, ValueError) as e:
        logger.error(f"❌ Could not read variant allocation table {path}, rebalancing disabled: {e}")
        return []
    if not isinstance(raw, dict):
        logger.error(f"❌ Variant allocation table {path} is not a JSON object, rebalancing disabled.")
        return []

    allocations = []
    for entry in raw.get("allocations", []):
        try:
            allocations.append(VariantAllocation(**entry))
        except ValidationError as e:
            logger.warning(f"Skipping allocation entry {entry.get('sku')!r}: {e}")
    return allocations
