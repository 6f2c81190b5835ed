import json
import logging
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import pandas as pd
import requests
from pydantic import ValidationError

from . import settings
from . import utils
from .errors import StateStoreError
from .schemas import AlertBatch, AlertItem, AlertRecord, AlertSummary, PlanningRow

logger = logging.getLogger(__name__)

ALERT_STATE_DOCUMENT = "alert-state.json"
REBALANCE_LEDGER_DOCUMENT = "rebalance-ledger.json"

# Ledger entries older than this are forgotten.
LEDGER_MAX_TOKENS = 500


class JsonDocumentStore:
    """Named JSON documents in one directory. Writes replace the file atomically."""

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def path_for(self, name: str) -> Path:
        return self.directory / name

    def read(self, name: str) -> Any | None:
        return utils.load_json(self.path_for(name))

    def write(self, name: str, payload: Any) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.directory, prefix=f".{name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2, default=str)
            os.replace(tmp_path, self.path_for(name))
        except BaseException:
            Path(tmp_path).unlink(missing_ok=True)
            raise


class AlertStateStore:
    """
    The last alert tier per SKU. save() replaces the whole set: a SKU that is
    not passed in is no longer alerting and disappears from the store.
    """

    def __init__(self, store: JsonDocumentStore, document: str = ALERT_STATE_DOCUMENT):
        self.store = store
        self.document = document

    def load(self) -> list[AlertRecord]:
        path = self.store.path_for(self.document)
        if not path.exists():
            return []

        raw = self.store.read(self.document)
        if not isinstance(raw, dict):
            # Unreadable is an error, not an empty state.
            raise StateStoreError(f"Alert state at {path} is unreadable or malformed.")

        records = []
        for entry in raw.get("records", []):
            try:
                records.append(AlertRecord(**entry))
            except ValidationError as e:
                logger.warning(f"Dropping unreadable alert record {entry!r}: {e}")
        return records

    def save(self, records: list[AlertRecord], now: Optional[datetime] = None) -> None:
        now = now or datetime.now()
        payload = {
            "lastUpdated": now.isoformat(),
            "records": [
                record.model_copy(update={"updated_at": record.updated_at or now}).model_dump(mode="json")
                for record in records
            ],
        }
        try:
            self.store.write(self.document, payload)
        except OSError as e:
            raise StateStoreError(f"Could not write alert state: {e}") from e
        logger.info(f"💾 Alert state saved ({len(records)} alerting SKUs).")


class RebalanceLedger:
    """Tokens of rebalance batches already applied to the platform."""

    def __init__(self, store: Optional[JsonDocumentStore] = None):
        self.store = store
        self._tokens: list[str] = []
        if store is not None:
            self._tokens = list((store.read(REBALANCE_LEDGER_DOCUMENT) or {}).get("tokens", []))

    def seen(self, token: str) -> bool:
        return token in self._tokens

    def record(self, token: str) -> None:
        self._tokens = (self._tokens + [token])[-LEDGER_MAX_TOKENS:]
        if self.store is not None:
            self.store.write(REBALANCE_LEDGER_DOCUMENT, {"tokens": self._tokens})


def save_outputs(
    rows: list[PlanningRow], report_name: str, output_dir: Optional[Path] = None
) -> Path:
    """Saves the planning table to CSV and conditionally to JSON, with dated filenames."""
    output_dir = output_dir or settings.OUTPUT_DIR
    output_dir.mkdir(parents=True, exist_ok=True)
    date_suffix = utils.get_date_suffix_for_filename()

    csv_path = output_dir / f"{report_name}_{date_suffix}.csv"
    json_path = output_dir / f"{report_name}_{date_suffix}.json"

    columns = [info.alias or name for name, info in PlanningRow.model_fields.items()]
    df = pd.DataFrame([row.model_dump(mode="json", by_alias=True) for row in rows], columns=columns)
    df.to_csv(csv_path, index=False)
    logger.info(f"✅ Planning report saved to: {csv_path}")

    if settings.SAVE_JSON_OUTPUT:
        with open(json_path, "w", encoding="utf-8") as f:
            json.dump(df.to_dict("records"), f, indent=2, default=str)
        logger.info(f"✅ JSON output saved to: {json_path}")

    return csv_path


def _format_alert_line(item: AlertItem) -> str:
    runway = "no sales" if item.runway_days >= 999 else f"{item.runway_days:g}d runway"
    name = f" ({item.display_name})" if item.display_name else ""
    flag = " [phase out]" if item.phase_out else ""
    return f"• *{item.sku}*: {item.quantity} units, {runway}{name}{flag}"


def build_alert_message(batch: AlertBatch, summary: AlertSummary) -> dict:
    """Slack payload with one section per non-empty tier, most severe first."""
    sections = [
        ("🚨 Out of Stock", batch.zero),
        ("🔴 Critical Stock", batch.critical),
        ("⚠️ Low Stock", batch.low),
    ]
    blocks = [
        {
            "type": "section",
            "text": {
                "type": "mrkdwn",
                "text": (
                    "*📦 LA Stock Alert*\n"
                    f"Currently alerting: *{summary.zero_count}* out of stock, "
                    f"*{summary.critical_count}* critical, *{summary.low_count}* low."
                ),
            },
        }
    ]
    for title, items in sections:
        if not items:
            continue
        lines = "\n".join(_format_alert_line(item) for item in items)
        blocks.append(
            {"type": "section", "text": {"type": "mrkdwn", "text": f"*{title}*\n{lines}"}}
        )

    return {
        "text": f"Stock alert: {batch.size} SKU(s) changed alert level",
        "blocks": blocks,
    }


def post_to_webhook(
    batch: AlertBatch, summary: AlertSummary, webhook_url: Optional[str] = None
) -> bool:
    """
    Posts one alert message for the whole cycle. Best effort: failures are
    logged and reported through the return value, never raised.
    """
    webhook_url = webhook_url or settings.SLACK_WEBHOOK_URL
    if not webhook_url:
        logger.warning("⚠️ SLACK_WEBHOOK_URL not set. Skipping alert notification.")
        return False

    logger.info(f"🚀 Posting {batch.size} alert(s) to webhook.")
    payload = build_alert_message(batch, summary)

    try:
        response = requests.post(webhook_url, json=payload, timeout=15)
        response.raise_for_status()
        logger.info("✅ Alert notification sent.")
        return True
    except requests.exceptions.RequestException as e:
        logger.error(f"❌ Error posting to webhook: {e}")
        return False
