import logging
from pathlib import Path
from typing import Optional

import pandas as pd
from pydantic import ValidationError

from stock_planner import aggregate, classification, data_handler, settings
from stock_planner.pipeline import DataPipeline
from stock_planner.schemas import PlanningRow

logger = logging.getLogger(__name__)


class PlanningPipeline(DataPipeline):
    def __init__(self, frame, config, today=None, test_mode=False, output_dir: Optional[Path] = None):
        super().__init__("planning", frame, config, today=today, test_mode=test_mode)
        self.output_dir = output_dir

    def transform(self, df: pd.DataFrame) -> list[PlanningRow] | None:
        logger.info(
            f"Classifying {len(df)} SKUs (burn period {self.config.burn_rate_period.value}, "
            f"target {self.config.target_days:g} days, sea ETA policy {self.config.unknown_eta_policy.value})"
        )

        try:
            inputs = aggregate.to_planning_inputs(df)
        except ValidationError as e:
            logger.error("❌ Planning frame failed validation!")
            logger.error(e)
            return None

        rows = []
        for item in inputs:
            issues = classification.find_data_quality_issues(item)
            if issues:
                logger.warning(f"  > ⚠️ {item.sku}: clamping malformed inputs to zero ({', '.join(issues)})")
            rows.append(classification.classify_sku(item, self.config, self.today))

        review = [row.sku for row in rows if row.needs_review]
        if review:
            logger.warning(f"⚠️ {len(review)} SKUs have sea stock without an ETA: {', '.join(review)}")

        return classification.sort_by_urgency(rows)

    def load(self, rows: list[PlanningRow]) -> list[PlanningRow]:
        counts = pd.Series([row.ship_type.value for row in rows]).value_counts()
        logger.info("\n--- Ship Type Summary ---")
        for ship_type, count in counts.items():
            logger.info(f"{ship_type}: {count}")

        if rows:
            data_handler.save_outputs(rows, settings.PLANNING_FILENAME_BASE, self.output_dir)
        else:
            logger.warning("No rows to save to disk.")
        return rows
