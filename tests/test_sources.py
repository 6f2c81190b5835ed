from datetime import date

import pytest

from stock_planner import sources
from stock_planner.errors import PlatformError, SnapshotUnavailableError
from stock_planner.sources import LiveSources


class FakeClient:
    def __init__(self, fail_levels=False):
        self.fail_levels = fail_levels
        self.sales_windows = []

    def fetch_locations(self):
        return [
            {"id": "1", "name": "New LA Office", "active": True},
            {"id": "3", "name": "China Warehouse", "active": True},
            {"id": "9", "name": "Closed Store", "active": False},
        ]

    def fetch_products(self):
        return [
            {
                "title": "Cable",
                "tags": ["inventoried"],
                "variants": [{"sku": "CBL-1", "title": "Default Title", "inventory_item_id": "200"}],
            }
        ]

    def fetch_inventory_levels(self, location_id):
        if self.fail_levels:
            raise PlatformError("throttled")
        quantities = {"1": 12, "3": 300, "9": 5}
        return [{"inventory_item_id": "200", "available": quantities[location_id]}]

    def fetch_sales_by_sku(self, since, until):
        self.sales_windows.append((since, until))
        return [{"sku": "CBL-1", "product_name": "Cable", "quantity": 21}]


def test_snapshot_from_active_locations(document_store):
    snapshot = LiveSources(FakeClient(), document_store).fetch_inventory_snapshot()

    assert snapshot.by_sku()["CBL-1"].locations == {"LA Office": 12, "China WH": 300}


def test_snapshot_failure_is_fatal(document_store):
    with pytest.raises(SnapshotUnavailableError):
        LiveSources(FakeClient(fail_levels=True), document_store).fetch_inventory_snapshot()


def test_location_ids(document_store):
    assert LiveSources(FakeClient(), document_store).fetch_location_ids() == {"LA Office": "1", "China WH": "3"}


def test_velocity_windows_end_yesterday(document_store):
    client = FakeClient()

    samples = LiveSources(client, document_store).fetch_velocity(today=date(2026, 3, 1))

    assert client.sales_windows == [
        (date(2026, 2, 22), date(2026, 2, 28)),
        (date(2026, 2, 8), date(2026, 2, 28)),
        (date(2025, 12, 1), date(2026, 2, 28)),
        (date(2025, 1, 30), date(2025, 2, 28)),
    ]
    assert samples[0].avg_daily_21d == 1.0
    assert samples[0].avg_daily_7d == 3.0


def test_registry_documents(document_store):
    document_store.write(
        sources.TRANSFERS_DOCUMENT,
        {
            "transfers": [
                {
                    "status": "in_transit",
                    "transferType": "Air Slow",
                    "destination": "LA Office",
                    "items": [{"sku": "CBL-1", "quantity": 40}],
                }
            ]
        },
    )
    document_store.write(
        sources.PRODUCTION_ORDERS_DOCUMENT,
        {"orders": [{"status": "partial", "items": [{"sku": "CBL-1", "quantity": 100, "receivedQuantity": 60}]}]},
    )
    document_store.write(sources.PHASE_OUT_DOCUMENT, {"skus": [{"sku": "OLD"}]})
    live = LiveSources(FakeClient(), document_store)

    assert [s.quantity for s in live.fetch_incoming_shipments()] == [40]
    assert [p.pending_quantity for p in live.fetch_pending_production_orders()] == [40]
    assert live.fetch_phase_out_set() == {"OLD"}


def test_missing_registry_documents_are_empty(document_store):
    live = LiveSources(FakeClient(), document_store)

    assert live.fetch_incoming_shipments() == []
    assert live.fetch_pending_production_orders() == []
    assert live.fetch_phase_out_set() == set()
