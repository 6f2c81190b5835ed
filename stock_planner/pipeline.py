import logging
from abc import ABC, abstractmethod
from datetime import date
from typing import Any, Optional

import pandas as pd

from .schemas import PlanningConfig

logger = logging.getLogger(__name__)


class DataPipeline(ABC):
    """
    Abstract base class for the per-cycle pipelines (Planning, Alerts).
    Follows an Extract -> Transform -> Load (ETL) pattern over the shared
    planning frame built once per refresh cycle.
    """

    def __init__(
        self,
        report_type: str,
        frame: pd.DataFrame,
        config: PlanningConfig,
        today: Optional[date] = None,
        test_mode: bool = False,
    ):
        self.report_type = report_type
        self.frame = frame
        self.config = config
        self.today = today or date.today()
        self.test_mode = test_mode

    def run(self) -> Any | None:
        """
        Orchestrates the pipeline execution and returns whatever load() produced.
        """
        logger.info(f"🚀 STEP: {self.report_type.upper()}")
        logger.info("-" * 30)

        # --- 1. EXTRACT ---
        raw_data = self.extract()
        if raw_data is None or raw_data.empty:
            logger.warning(f"⚠️ No data extracted for {self.report_type}. Nothing to do.")
            return None

        # --- 2. TRANSFORM ---
        result = self.transform(raw_data)
        if result is None:
            logger.error(f"❌ Transformation failed for {self.report_type}.")
            return None

        # --- 3. LOAD ---
        loaded = self.load(result)

        logger.info(f"✅ {self.report_type.capitalize()} Pipeline Finished.\n")
        logger.info("=" * 60)
        return loaded

    def extract(self) -> pd.DataFrame | None:
        """Returns the rows of the planning frame this pipeline works on."""
        return self.frame

    @abstractmethod
    def transform(self, df: pd.DataFrame) -> Any | None:
        """
        Runs the decision engine over the frame and returns validated
        Pydantic models, or None when the frame could not be processed.
        """
        pass

    @abstractmethod
    def load(self, result: Any) -> Any:
        """Persists and publishes the result."""
        pass
