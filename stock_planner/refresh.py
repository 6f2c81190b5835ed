"""
One refresh cycle: rebalance split variants, take the inventory snapshot,
join the secondary sources, then run the planning and alert pipelines.

Only a missing snapshot aborts the cycle. Every other source degrades to
"nothing known" with a warning, and the alert pipeline stops evaluating
when the cycle budget runs out.
"""

import logging
import time
import uuid
from datetime import date, datetime
from typing import Callable, Optional

import requests
from pydantic import BaseModel, Field, ValidationError

from . import aggregate, settings
from .data_handler import AlertStateStore
from .errors import PlatformError, SnapshotUnavailableError
from .pipelines.alerts import AlertPipeline
from .pipelines.planning import PlanningPipeline
from .rebalancer import VariantRebalancer
from .schemas import (
    AlertSummary,
    PlanningConfig,
    PlanningRow,
    RebalanceResult,
    RebalanceStatus,
)
from .sources import InventorySources

logger = logging.getLogger(__name__)

# Errors a secondary source may raise without taking the cycle down.
SOURCE_ERRORS = (
    PlatformError,
    requests.exceptions.RequestException,
    ValidationError,
    OSError,
    ValueError,
)


class CycleReport(BaseModel):
    cycle_id: str
    started_at: datetime
    duration_seconds: float = 0.0
    total_units: int = 0
    rebalance: list[RebalanceResult] = Field(default_factory=list)
    degraded_sources: list[str] = Field(default_factory=list)
    planning_rows: list[PlanningRow] = Field(default_factory=list)
    alert_summary: Optional[AlertSummary] = None


class RefreshCycle:
    def __init__(
        self,
        sources: InventorySources,
        config: PlanningConfig,
        state_store: AlertStateStore,
        rebalancer: Optional[VariantRebalancer] = None,
        today: Optional[date] = None,
        test_mode: bool = False,
        budget_seconds: Optional[float] = None,
        settle_seconds: Optional[float] = None,
        notifier: Optional[Callable] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        cycle_id: Optional[str] = None,
    ):
        self.sources = sources
        self.config = config
        self.state_store = state_store
        self.rebalancer = rebalancer
        self.today = today or date.today()
        self.test_mode = test_mode
        self.budget_seconds = settings.CYCLE_BUDGET_SECONDS if budget_seconds is None else budget_seconds
        self.settle_seconds = settings.REBALANCE_SETTLE_SECONDS if settle_seconds is None else settle_seconds
        self.notifier = notifier
        self.clock = clock
        self.sleep = sleep
        # A retry of the same cycle reuses its id so applied batches are not repeated.
        self.cycle_id = cycle_id or uuid.uuid4().hex

    def run(self) -> CycleReport:
        """Raises SnapshotUnavailableError when the cycle cannot produce any output."""
        start = self.clock()
        deadline = start + self.budget_seconds
        report = CycleReport(cycle_id=self.cycle_id, started_at=datetime.now())
        logger.info(f"--- Refresh cycle for {self.today.isoformat()} (budget {self.budget_seconds:g}s) ---")

        # 1. Rebalance, so the snapshot sees the final split
        if self.rebalancer is not None and self.config.allocations:
            report.rebalance = self.rebalancer.rebalance_all(self.config.allocations, self.cycle_id)
            if any(r.status == RebalanceStatus.ADJUSTED for r in report.rebalance):
                logger.info(f"Waiting {self.settle_seconds:g}s for adjustments to settle...")
                self.sleep(self.settle_seconds)

        # 2. Snapshot (fatal)
        snapshot = self.sources.fetch_inventory_snapshot()
        if not snapshot.inventory:
            raise SnapshotUnavailableError(
                "Inventory snapshot is empty; refusing to replace alert state with nothing."
            )
        report.total_units = snapshot.total_units
        logger.info(f"📦 Snapshot: {len(snapshot.inventory)} SKUs, {snapshot.total_units} units.")

        # 3. Secondary sources (degrade to empty)
        velocity = self._fetch_or_empty(
            report, "velocity", lambda: self.sources.fetch_velocity(self.today), []
        )
        shipments = self._fetch_or_empty(
            report, "incoming shipments", self.sources.fetch_incoming_shipments, []
        )
        production = self._fetch_or_empty(
            report, "production orders", self.sources.fetch_pending_production_orders, []
        )
        phase_out = self._fetch_or_empty(
            report, "phase-out list", self.sources.fetch_phase_out_set, set()
        )

        frame = aggregate.build_planning_frame(
            snapshot, velocity, shipments, production, phase_out, self.config
        )

        # 4. Planning
        rows = PlanningPipeline(frame, self.config, today=self.today, test_mode=self.test_mode).run()
        report.planning_rows = rows or []

        # 5. Alerts, bounded by what is left of the budget
        alert_kwargs = {}
        if self.notifier is not None:
            alert_kwargs["notifier"] = self.notifier
        report.alert_summary = AlertPipeline(
            frame,
            self.config,
            self.state_store,
            today=self.today,
            test_mode=self.test_mode,
            deadline=deadline,
            clock=self.clock,
            **alert_kwargs,
        ).run()

        report.duration_seconds = round(self.clock() - start, 3)
        logger.info(f"🏁 Refresh cycle finished in {report.duration_seconds:g}s.")
        return report

    @staticmethod
    def _fetch_or_empty(report: CycleReport, name: str, fetch: Callable, empty):
        try:
            return fetch()
        except SOURCE_ERRORS as e:
            logger.warning(f"⚠️ Could not load {name}, continuing without it: {e}")
            report.degraded_sources.append(name)
            return empty
