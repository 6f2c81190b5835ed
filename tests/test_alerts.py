"""
Tests for tier assignment and transition-triggered alert evaluation.
"""

from datetime import datetime

import pytest

from stock_planner.alerts import assign_tier, evaluate_alerts
from stock_planner.schemas import AlertInput, AlertRecord, AlertThresholds, AlertTier

THRESHOLDS = AlertThresholds()
NOW = datetime(2026, 3, 1, 9, 0)


def alert_input(sku, quantity, burn_rate=1.0, incoming_air=0, phase_out=False):
    return AlertInput(
        sku=sku,
        display_name=f"Product {sku}",
        quantity=quantity,
        incoming_air=incoming_air,
        burn_rate=burn_rate,
        phase_out=phase_out,
    )


def record(sku, tier, quantity=0):
    return AlertRecord(sku=sku, tier=tier, quantity=quantity)


def run(inputs, previous=(), **kwargs):
    return evaluate_alerts(inputs, list(previous), THRESHOLDS, now=NOW, **kwargs)


@pytest.mark.parametrize(
    "quantity, incoming_air, burn_rate, expected",
    [
        (40, 0, 1.0, AlertTier.CRITICAL),
        (49, 0, 1.0, AlertTier.CRITICAL),
        (50, 0, 1.0, AlertTier.LOW),
        (150, 0, 2.0, AlertTier.LOW),
        (150, 0, 1.0, AlertTier.NONE),  # runway 150 days
        (200, 0, 10.0, AlertTier.NONE),
        (40, 100, 1.0, AlertTier.NONE),  # air shipment stretches runway
        (40, 0, 0.0, AlertTier.NONE),  # no sales, sentinel runway
        (0, 500, 0.0, AlertTier.ZERO),
        (-3, 0, 1.0, AlertTier.ZERO),
    ],
)
def test_assign_tier(quantity, incoming_air, burn_rate, expected):
    tier, _ = assign_tier(quantity, incoming_air, burn_rate, THRESHOLDS)
    assert tier == expected


def test_thresholds_are_overridable():
    strict = AlertThresholds(critical_threshold=100, low_threshold=500, runway_threshold=200)

    tier, runway = assign_tier(150, 0, 1.0, strict)

    assert tier == AlertTier.LOW
    assert runway == 150


def test_nan_quantity_reads_as_out_of_stock():
    tier, _ = assign_tier(float("nan"), 0, 1.0, THRESHOLDS)
    assert tier == AlertTier.ZERO


class TestEvaluateAlerts:
    def test_critical_after_low_fires_once(self):
        outcome = run([alert_input("SKU-A", 40)], [record("SKU-A", AlertTier.LOW, 120)])

        assert [a.sku for a in outcome.batch.critical] == ["SKU-A"]
        assert outcome.batch.size == 1
        assert outcome.summary.critical_count == 1
        assert outcome.summary.notified == 1
        assert outcome.batch.critical[0].runway_days == 40

    def test_zero_stock_alerts_regardless_of_incoming(self):
        outcome = run([alert_input("SKU-Z", 0, incoming_air=1000)])

        assert [a.sku for a in outcome.batch.zero] == ["SKU-Z"]
        assert outcome.summary.zero_count == 1

    def test_unchanged_tier_does_not_repeat(self):
        outcome = run([alert_input("SKU-A", 40)], [record("SKU-A", AlertTier.CRITICAL, 45)])

        assert outcome.batch.is_empty
        assert outcome.summary.critical_count == 1
        assert outcome.summary.notified == 0
        # Still recorded, with the latest quantity.
        assert outcome.records == [
            AlertRecord(sku="SKU-A", tier=AlertTier.CRITICAL, quantity=40, updated_at=NOW)
        ]

    def test_zero_does_not_repeat_either(self):
        outcome = run([alert_input("SKU-Z", 0)], [record("SKU-Z", AlertTier.ZERO)])
        assert outcome.batch.is_empty

    def test_second_run_on_same_data_is_silent(self):
        inputs = [alert_input("SKU-A", 40), alert_input("SKU-B", 150, burn_rate=2.0), alert_input("SKU-C", 0)]

        first = run(inputs)
        second = run(inputs, first.records)

        assert first.batch.size == 3
        assert second.batch.is_empty
        assert {r.sku: r.tier for r in second.records} == {r.sku: r.tier for r in first.records}

    @pytest.mark.parametrize(
        "previous, quantity, burn_rate, expected_list",
        [
            (None, 150, 2.0, "low"),
            (AlertTier.LOW, 40, 1.0, "critical"),
            (AlertTier.CRITICAL, 0, 1.0, "zero"),
            (AlertTier.CRITICAL, 150, 2.0, "low"),
        ],
    )
    def test_each_transition_fires_exactly_once(self, previous, quantity, burn_rate, expected_list):
        prior = [record("SKU-T", previous)] if previous else []
        outcome = run([alert_input("SKU-T", quantity, burn_rate=burn_rate)], prior)

        assert outcome.batch.size == 1
        assert [a.sku for a in getattr(outcome.batch, expected_list)] == ["SKU-T"]

    def test_restocked_sku_is_cleared_without_notice(self):
        outcome = run([alert_input("SKU-A", 500)], [record("SKU-A", AlertTier.CRITICAL, 10)])

        assert outcome.records == []
        assert outcome.batch.is_empty

    def test_sku_missing_from_inputs_is_dropped(self):
        outcome = run([], [record("GONE", AlertTier.LOW, 100)])
        assert outcome.records == []

    def test_oversold_quantity_stays_negative(self):
        outcome = run([alert_input("SKU-O", -4)])

        assert outcome.batch.zero[0].quantity == -4
        assert outcome.records[0].quantity == -4

    def test_batch_sorted_by_quantity_then_sku(self):
        outcome = run(
            [
                alert_input("B", 30),
                alert_input("A", 30),
                alert_input("C", 10),
            ]
        )
        assert [a.sku for a in outcome.batch.critical] == ["C", "A", "B"]

    def test_phase_out_flag_is_carried(self):
        outcome = run([alert_input("OLD", 10, phase_out=True)])
        assert outcome.batch.critical[0].phase_out is True

    def test_deadline_carries_over_unevaluated_records(self):
        ticks = iter([0.0, 0.5, 2.0, 3.0])
        previous = [record("SKU-2", AlertTier.LOW, 120), record("SKU-3", AlertTier.ZERO, 0)]

        outcome = run(
            [alert_input("SKU-1", 40), alert_input("SKU-2", 500), alert_input("SKU-3", 300)],
            previous,
            deadline=1.0,
            clock=lambda: next(ticks),
        )

        # SKU-1 and SKU-2 were evaluated; SKU-3 keeps its old record.
        assert outcome.summary.complete is False
        assert {r.sku: r.tier for r in outcome.records} == {
            "SKU-1": AlertTier.CRITICAL,
            "SKU-3": AlertTier.ZERO,
        }
        assert [a.sku for a in outcome.batch.critical] == ["SKU-1"]
