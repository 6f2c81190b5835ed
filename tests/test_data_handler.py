"""
Tests for the JSON document store, alert state persistence, report output
and webhook posting.
"""

import json
from datetime import datetime

import pandas as pd
import pytest
import requests

from stock_planner import data_handler, settings
from stock_planner.errors import StateStoreError
from stock_planner.schemas import (
    AlertBatch,
    AlertItem,
    AlertRecord,
    AlertSummary,
    AlertTier,
    PlanningRow,
    ProdStatus,
    ShipType,
)

NOW = datetime(2026, 3, 1, 9, 0)


class TestAlertStateStore:
    def test_missing_document_is_empty_state(self, state_store):
        assert state_store.load() == []

    def test_save_replaces_the_whole_set(self, state_store, document_store):
        state_store.save(
            [AlertRecord(sku="A", tier=AlertTier.LOW, quantity=100), AlertRecord(sku="B", tier=AlertTier.ZERO)],
            now=NOW,
        )
        state_store.save([AlertRecord(sku="B", tier=AlertTier.ZERO)], now=NOW)

        loaded = state_store.load()
        assert [r.sku for r in loaded] == ["B"]
        assert loaded[0].updated_at == NOW

        raw = json.loads(document_store.path_for(data_handler.ALERT_STATE_DOCUMENT).read_text())
        assert raw["lastUpdated"] == NOW.isoformat()
        assert raw["records"][0]["tier"] == "zero"

    def test_empty_save_clears_everything(self, state_store):
        state_store.save([AlertRecord(sku="A", tier=AlertTier.LOW)], now=NOW)
        state_store.save([], now=NOW)
        assert state_store.load() == []

    def test_unreadable_records_are_dropped(self, state_store, document_store):
        document_store.write(
            data_handler.ALERT_STATE_DOCUMENT,
            {"records": [{"sku": "A", "tier": "critical", "quantity": 3}, {"sku": "B", "tier": "panic"}]},
        )
        assert [r.sku for r in state_store.load()] == ["A"]

    def test_truncated_document_raises_instead_of_reading_empty(self, state_store, document_store):
        state_store.save([AlertRecord(sku="A", tier=AlertTier.CRITICAL, quantity=12)], now=NOW)
        path = document_store.path_for(data_handler.ALERT_STATE_DOCUMENT)
        path.write_bytes(path.read_bytes()[:-5])

        with pytest.raises(StateStoreError):
            state_store.load()

    def test_non_object_document_raises(self, state_store, document_store):
        document_store.write(data_handler.ALERT_STATE_DOCUMENT, ["not", "a", "state"])

        with pytest.raises(StateStoreError):
            state_store.load()

    def test_write_failure_raises_state_store_error(self, state_store, monkeypatch):
        def broken_write(name, payload):
            raise PermissionError("read-only filesystem")

        monkeypatch.setattr(state_store.store, "write", broken_write)

        with pytest.raises(StateStoreError):
            state_store.save([], now=NOW)


def test_document_store_write_leaves_no_temp_files(document_store):
    document_store.write("doc.json", {"a": 1})
    document_store.write("doc.json", {"a": 2})

    assert document_store.read("doc.json") == {"a": 2}
    assert [p.name for p in document_store.directory.iterdir()] == ["doc.json"]


def test_rebalance_ledger_is_bounded(document_store, monkeypatch):
    monkeypatch.setattr(data_handler, "LEDGER_MAX_TOKENS", 2)
    ledger = data_handler.RebalanceLedger(document_store)
    for token in ("t1", "t2", "t3"):
        ledger.record(token)

    reloaded = data_handler.RebalanceLedger(document_store)
    assert not reloaded.seen("t1")
    assert reloaded.seen("t2") and reloaded.seen("t3")


def test_save_outputs_writes_report_headers(tmp_path):
    rows = [
        PlanningRow(
            sku="A",
            product_title="Alpha",
            need_quantity=12,
            ship_type=ShipType.EXPRESS,
            prod_status=ProdStatus.ORDER_MORE,
        )
    ]

    csv_path = data_handler.save_outputs(rows, "planning_report", tmp_path)

    df = pd.read_csv(csv_path)
    assert list(df.columns)[:4] == ["SKU", "Product", "LA", "In Air"]
    assert df.loc[0, "Ship Type"] == "Express"
    assert df.loc[0, "Need"] == 12
    assert not list(tmp_path.glob("*.json"))


def test_save_outputs_json_when_enabled(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "SAVE_JSON_OUTPUT", True)
    rows = [PlanningRow(sku="A", ship_type=ShipType.SEA, prod_status=ProdStatus.NO_ACTION)]

    data_handler.save_outputs(rows, "planning_report", tmp_path)

    (json_path,) = tmp_path.glob("*.json")
    assert json.loads(json_path.read_text())[0]["SKU"] == "A"


@pytest.fixture
def batch():
    return AlertBatch(
        zero=[AlertItem(sku="Z", display_name="Zed", quantity=0, runway_days=0, tier=AlertTier.ZERO)],
        low=[
            AlertItem(sku="L", quantity=120, runway_days=999, phase_out=True, tier=AlertTier.LOW),
        ],
    )


@pytest.fixture
def summary():
    return AlertSummary(zero_count=1, critical_count=3, low_count=1, notified=2)


def test_alert_message_sections(batch, summary):
    message = data_handler.build_alert_message(batch, summary)

    texts = [block["text"]["text"] for block in message["blocks"]]
    assert message["text"] == "Stock alert: 2 SKU(s) changed alert level"
    assert "*3* critical" in texts[0]
    assert texts[1].startswith("*🚨 Out of Stock*")
    assert "*Z*: 0 units, 0d runway (Zed)" in texts[1]
    assert texts[2].startswith("*⚠️ Low Stock*")
    assert "no sales" in texts[2] and "[phase out]" in texts[2]
    assert len(texts) == 3


class _Response:
    def __init__(self, status_code=200):
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"{self.status_code} Server Error")


def test_post_to_webhook_sends_one_message(batch, summary, monkeypatch):
    calls = []

    def fake_post(url, json=None, timeout=None):
        calls.append((url, json))
        return _Response()

    monkeypatch.setattr(requests, "post", fake_post)

    assert data_handler.post_to_webhook(batch, summary, "https://hooks.example/abc") is True
    assert len(calls) == 1
    assert calls[0][0] == "https://hooks.example/abc"


@pytest.mark.parametrize(
    "failure",
    [
        lambda *a, **k: _Response(500),
        lambda *a, **k: (_ for _ in ()).throw(requests.exceptions.ConnectionError("down")),
    ],
)
def test_post_to_webhook_failure_is_reported_not_raised(batch, summary, monkeypatch, failure):
    monkeypatch.setattr(requests, "post", failure)
    assert data_handler.post_to_webhook(batch, summary, "https://hooks.example/abc") is False


def test_post_to_webhook_without_url(batch, summary):
    assert data_handler.post_to_webhook(batch, summary) is False
