from datetime import date

import pytest

from stock_planner.data_handler import AlertStateStore, JsonDocumentStore
from stock_planner.errors import PlatformError, SnapshotUnavailableError
from stock_planner.schemas import (
    InventorySnapshot,
    PlanningConfig,
    PlatformVariant,
    SkuInventory,
    VelocitySample,
)
from stock_planner.sources import InventorySources, VariantPlatform

TODAY = date(2026, 3, 1)


class FakeSources(InventorySources):
    """In-memory sources; any value that is an Exception is raised on fetch."""

    def __init__(self, snapshot=None, velocity=None, shipments=None, production=None, phase_out=None):
        self.snapshot = snapshot if snapshot is not None else InventorySnapshot()
        self.velocity = velocity or []
        self.shipments = shipments or []
        self.production = production or []
        self.phase_out = phase_out or set()
        self.calls = []

    def _give(self, name, value):
        self.calls.append(name)
        if isinstance(value, Exception):
            raise value
        return value

    def fetch_inventory_snapshot(self):
        return self._give("snapshot", self.snapshot)

    def fetch_velocity(self, today=None):
        return self._give("velocity", self.velocity)

    def fetch_incoming_shipments(self):
        return self._give("shipments", self.shipments)

    def fetch_pending_production_orders(self):
        return self._give("production", self.production)

    def fetch_phase_out_set(self):
        return self._give("phase_out", self.phase_out)


class FakePlatform(VariantPlatform):
    def __init__(self, variants=None, available=None, fail_on=()):
        # variants: sku -> [PlatformVariant]; available: inventory_item_id -> qty
        self.variants = variants or {}
        self.available = dict(available or {})
        self.fail_on = set(fail_on)
        self.adjust_calls = []

    def find_variants(self, sku):
        if ("find", sku) in self.fail_on:
            raise PlatformError("lookup down")
        return list(self.variants.get(sku, []))

    def fetch_available(self, location_id, inventory_item_ids):
        return {i: self.available.get(i, 0) for i in inventory_item_ids}

    def adjust_quantities(self, location_id, changes, reference):
        if ("adjust", location_id) in self.fail_on or any(("adjust", i) in self.fail_on for i, _ in changes):
            raise PlatformError("adjust rejected")
        self.adjust_calls.append((location_id, list(changes), reference))
        for item_id, delta in changes:
            self.available[item_id] = self.available.get(item_id, 0) + delta


def make_variant(sku, title, item_id):
    return PlatformVariant(variant_id=f"v-{item_id}", sku=sku, title=title, inventory_item_id=item_id)


def make_snapshot(*items):
    """items: (sku, {location: available}) pairs."""
    return InventorySnapshot(
        inventory=[
            SkuInventory(sku=sku, product_title=f"Product {sku}", locations=locations)
            for sku, locations in items
        ],
        location_ids={"LA Office": "1", "DTLA WH": "2", "China WH": "3"},
        locations=["LA Office", "DTLA WH", "China WH"],
    )


@pytest.fixture
def today():
    return TODAY


@pytest.fixture
def config():
    return PlanningConfig()


@pytest.fixture
def document_store(tmp_path):
    return JsonDocumentStore(tmp_path / "data")


@pytest.fixture
def state_store(document_store):
    return AlertStateStore(document_store)


@pytest.fixture
def fake_sources():
    return FakeSources(
        snapshot=make_snapshot(
            ("SKU-A", {"LA Office": 30, "DTLA WH": 10, "China WH": 500}),
            ("SKU-B", {"LA Office": 1000, "China WH": 0}),
            ("SKU-C", {"LA Office": 0, "China WH": 20}),
        ),
        velocity=[
            VelocitySample(sku="SKU-A", avg_daily_7d=2.0, avg_daily_21d=1.0, avg_daily_90d=1.0),
            VelocitySample(sku="SKU-B", avg_daily_7d=1.0, avg_daily_21d=1.0, avg_daily_90d=1.0),
            VelocitySample(sku="SKU-C", avg_daily_7d=0.5, avg_daily_21d=0.5, avg_daily_90d=0.5),
        ],
    )


@pytest.fixture
def unavailable_sources():
    return FakeSources(snapshot=SnapshotUnavailableError("platform down"))


@pytest.fixture(autouse=True)
def _isolate_outputs(tmp_path, monkeypatch):
    """Keep report files and logs out of the repository."""
    from stock_planner import settings

    monkeypatch.setattr(settings, "OUTPUT_DIR", tmp_path / "output")
    monkeypatch.setattr(settings, "LOG_DIR", tmp_path / "logs")
    monkeypatch.setattr(settings, "SAVE_JSON_OUTPUT", False)
    monkeypatch.setattr(settings, "SLACK_WEBHOOK_URL", None)
