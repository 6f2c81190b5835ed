"""
Contracts for the collaborators a refresh cycle consumes, and the live
implementation that wires them to the commerce platform and the JSON
registries.
"""

import logging
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from datetime import date, timedelta

import requests

from . import parsers, settings
from .errors import PlatformError, SnapshotUnavailableError
from .schemas import (
    IncomingShipment,
    InventorySnapshot,
    PlatformVariant,
    ProductionOrderPending,
    VelocitySample,
)

logger = logging.getLogger(__name__)

TRANSFERS_DOCUMENT = "transfers.json"
PRODUCTION_ORDERS_DOCUMENT = "production-orders.json"
PHASE_OUT_DOCUMENT = "phase-out-skus.json"

# Velocity windows as (first day back, last day back); all end at end of yesterday.
VELOCITY_WINDOWS = {
    "avg_daily_7d": (7, 1),
    "avg_daily_21d": (21, 1),
    "avg_daily_90d": (90, 1),
    # Same 30 days, one year earlier.
    "avg_daily_last_year_30d": (395, 366),
}


class InventorySources(ABC):
    """Everything the planner reads once per refresh cycle."""

    @abstractmethod
    def fetch_inventory_snapshot(self) -> InventorySnapshot:
        """Raises SnapshotUnavailableError when no snapshot can be produced."""

    @abstractmethod
    def fetch_velocity(self, today: date | None = None) -> list[VelocitySample]:
        pass

    @abstractmethod
    def fetch_incoming_shipments(self) -> list[IncomingShipment]:
        pass

    @abstractmethod
    def fetch_pending_production_orders(self) -> list[ProductionOrderPending]:
        pass

    @abstractmethod
    def fetch_phase_out_set(self) -> set[str]:
        pass


class VariantPlatform(ABC):
    """The slice of the commerce platform the variant rebalancer needs."""

    @abstractmethod
    def find_variants(self, sku: str) -> list[PlatformVariant]:
        pass

    @abstractmethod
    def fetch_available(self, location_id: str, inventory_item_ids: list[str]) -> dict[str, int]:
        pass

    @abstractmethod
    def adjust_quantities(
        self, location_id: str, changes: list[tuple[str, int]], reference: str
    ) -> None:
        """Applies all (inventory_item_id, delta) pairs in one call or raises PlatformError."""


class LiveSources(InventorySources):
    def __init__(self, client, registry, max_workers: int = 4):
        # client: platform.ShopifyClient, registry: data_handler.JsonDocumentStore
        self.client = client
        self.registry = registry
        self.max_workers = max_workers

    def fetch_inventory_snapshot(self) -> InventorySnapshot:
        try:
            locations = [loc for loc in self.client.fetch_locations() if loc.get("active", True)]
            products = self.client.fetch_products()

            # Each location's levels are independent, so fetch them side by side.
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                level_lists = pool.map(
                    lambda loc: self.client.fetch_inventory_levels(loc["id"]), locations
                )
                levels_by_location = {
                    loc["id"]: levels for loc, levels in zip(locations, level_lists)
                }
        except (PlatformError, requests.exceptions.RequestException) as e:
            raise SnapshotUnavailableError(f"Inventory snapshot unavailable: {e}") from e

        return parsers.parse_inventory_snapshot(locations, products, levels_by_location)

    def fetch_location_ids(self) -> dict[str, str]:
        """Display name -> platform location id, for active locations."""
        return {
            settings.LOCATION_DISPLAY_NAMES.get(loc["name"], loc["name"]): loc["id"]
            for loc in self.client.fetch_locations()
            if loc.get("active", True)
        }

    def fetch_velocity(self, today: date | None = None) -> list[VelocitySample]:
        today = today or date.today()
        sales_by_window = {}
        for field_name, (start_back, end_back) in VELOCITY_WINDOWS.items():
            since = today - timedelta(days=start_back)
            until = today - timedelta(days=end_back)
            sales_by_window[field_name] = self.client.fetch_sales_by_sku(since, until)
        return parsers.parse_velocity(sales_by_window)

    def fetch_incoming_shipments(self) -> list[IncomingShipment]:
        document = self.registry.read(TRANSFERS_DOCUMENT) or {}
        return parsers.parse_incoming_transfers(document.get("transfers", []))

    def fetch_pending_production_orders(self) -> list[ProductionOrderPending]:
        document = self.registry.read(PRODUCTION_ORDERS_DOCUMENT) or {}
        return parsers.parse_production_orders(document.get("orders", []))

    def fetch_phase_out_set(self) -> set[str]:
        return parsers.parse_phase_out(self.registry.read(PHASE_OUT_DOCUMENT))
