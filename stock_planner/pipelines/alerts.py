import logging
import time
from datetime import datetime
from typing import Optional

import pandas as pd

from stock_planner import aggregate, alerts, data_handler
from stock_planner.errors import StateStoreError
from stock_planner.pipeline import DataPipeline
from stock_planner.schemas import AlertOutcome, AlertSummary

logger = logging.getLogger(__name__)


class AlertPipeline(DataPipeline):
    """
    Evaluates alert tiers against the stored state, sends at most one
    notification, then replaces the stored state with the new set.
    """

    def __init__(
        self,
        frame,
        config,
        state_store: data_handler.AlertStateStore,
        today=None,
        test_mode=False,
        deadline: Optional[float] = None,
        notifier=data_handler.post_to_webhook,
        clock=time.monotonic,
    ):
        super().__init__("alerts", frame, config, today=today, test_mode=test_mode)
        self.state_store = state_store
        self.deadline = deadline
        self.notifier = notifier
        self.clock = clock

    def transform(self, df: pd.DataFrame) -> AlertOutcome | None:
        try:
            previous = self.state_store.load()
        except StateStoreError as e:
            logger.error(f"❌ Could not load alert state: {e}")
            return None
        logger.info(f"Loaded {len(previous)} previous alert records.")

        return alerts.evaluate_alerts(
            aggregate.to_alert_inputs(df),
            previous,
            self.config.thresholds,
            deadline=self.deadline,
            clock=self.clock,
            now=datetime.now(),
            sentinel=self.config.runway_sentinel,
        )

    def load(self, outcome: AlertOutcome) -> AlertSummary:
        summary = outcome.summary
        logger.info(
            f"Alerting: {summary.zero_count} zero, {summary.critical_count} critical, "
            f"{summary.low_count} low; {summary.notified} changed tier."
        )

        # Test mode leaves the stored state as it was.
        if self.test_mode:
            logger.info("🧪 Test Mode: Skipping alert notification and leaving alert state untouched.")
            return summary

        # 1. Notify (best effort, one call per cycle)
        if outcome.batch.is_empty:
            logger.info("No tier changes, nothing to announce.")
        else:
            self.notifier(outcome.batch, summary)

        # 2. Persist, regardless of how the notification went
        try:
            self.state_store.save(outcome.records)
        except StateStoreError as e:
            logger.error(f"❌ {e}")
        return summary
