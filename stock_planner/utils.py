import json
import logging
import math
from datetime import date, datetime
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


def get_date_suffix_for_filename() -> str:
    """Returns the current date as a YYYY-MM-DD string for filenames."""
    return datetime.now().strftime("%Y-%m-%d")


def parse_date(value: Any) -> date | None:
    """
    Accepts a date, datetime, or ISO-8601 string ('2026-03-15' or
    '2026-03-15T08:00:00Z'). Anything else, including '', is an unknown date.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00")).date()
    except ValueError:
        logger.warning(f"Unparseable date {value!r}, treating as unknown.")
        return None


def clamp_quantity(value: Any) -> float:
    """Negative, NaN, infinite and missing quantities all read as zero."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(number) or math.isinf(number) or number < 0:
        return 0.0
    return number


def is_malformed_quantity(value: Any) -> bool:
    if value is None:
        return False
    try:
        number = float(value)
    except (TypeError, ValueError):
        return True
    return math.isnan(number) or math.isinf(number) or number < 0


def runway_days(quantity: float, burn_rate: float, sentinel: float = 999) -> float:
    """Days of cover at the given burn rate; a zero burn rate yields the sentinel."""
    if burn_rate <= 0:
        return sentinel
    return quantity / burn_rate


def round_half_up(value: float) -> int:
    # Python's round() is banker's rounding; splits must round .5 up.
    return int(math.floor(value + 0.5))


def strip_gid(gid: str | None) -> str | None:
    """'gid://shopify/InventoryItem/123' -> '123'."""
    if gid is None:
        return None
    return str(gid).rsplit("/", 1)[-1]


def load_json(file_path: Path) -> Any | None:
    """
    Reads a JSON document, retrying as latin-1 when the file is not valid UTF-8.
    Missing or unreadable files return None.
    """
    try:
        with open(file_path, encoding="utf-8-sig") as f:
            return json.load(f)

    except UnicodeDecodeError:
        logger.info(f"UTF-8 decoding failed for {file_path.name}. Retrying with 'latin-1'.")
        try:
            with open(file_path, encoding="latin-1") as f:
                return json.load(f)
        except (OSError, ValueError) as e_latin1:
            logger.error(f"Could not read {file_path.name} even with latin-1. Reason: {e_latin1}")
            return None

    except FileNotFoundError:
        logger.info(f"Document not found at {file_path}, skipping.")
        return None

    except (OSError, ValueError) as e_general:
        logger.error(f"An unexpected error occurred while reading {file_path.name}. Reason: {e_general}")
        return None
