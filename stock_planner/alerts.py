"""
Tiered low-stock alerting.

A SKU is announced only when its tier changes from the one recorded last
cycle. The returned record set is the complete new state: SKUs back at tier
`none` are simply absent from it, which is how stale alerts get cleared.
"""

import logging
import math
import time
from datetime import datetime
from typing import Callable, Iterable, Optional

from .schemas import (
    AlertBatch,
    AlertInput,
    AlertItem,
    AlertOutcome,
    AlertRecord,
    AlertSummary,
    AlertThresholds,
    AlertTier,
)
from .utils import clamp_quantity, runway_days

logger = logging.getLogger(__name__)


def assign_tier(
    quantity: float,
    incoming_air: float,
    burn_rate: float,
    thresholds: AlertThresholds,
    sentinel: float = 999,
) -> tuple[AlertTier, float]:
    """Returns the tier and the air runway (days) it was based on."""
    if quantity is None or math.isnan(quantity):
        quantity = 0
    runway = runway_days(
        max(quantity, 0) + clamp_quantity(incoming_air),
        clamp_quantity(burn_rate),
        sentinel,
    )

    if quantity <= 0:
        return AlertTier.ZERO, runway
    if runway < thresholds.runway_threshold:
        if quantity < thresholds.critical_threshold:
            return AlertTier.CRITICAL, runway
        if quantity < thresholds.low_threshold:
            return AlertTier.LOW, runway
    return AlertTier.NONE, runway


def evaluate_alerts(
    inputs: Iterable[AlertInput],
    previous: Iterable[AlertRecord],
    thresholds: AlertThresholds,
    deadline: Optional[float] = None,
    clock: Callable[[], float] = time.monotonic,
    now: Optional[datetime] = None,
    sentinel: float = 999,
) -> AlertOutcome:
    """
    Classifies every SKU and diffs it against the previous records.

    If `deadline` (a `clock()` reading) passes mid-way, the SKUs not yet
    evaluated keep their previous record so the persisted set stays coherent,
    and the summary is marked incomplete.
    """
    now = now or datetime.now()
    prior_by_sku = {record.sku: record for record in previous}

    records: list[AlertRecord] = []
    batch = AlertBatch()
    counts = {AlertTier.ZERO: 0, AlertTier.CRITICAL: 0, AlertTier.LOW: 0}
    evaluated: set[str] = set()
    complete = True

    for item in inputs:
        if deadline is not None and clock() > deadline:
            complete = False
            break
        evaluated.add(item.sku)

        tier, runway = assign_tier(
            item.quantity, item.incoming_air, item.burn_rate, thresholds, sentinel
        )
        if tier == AlertTier.NONE:
            continue

        # Oversold stock is reported as the negative number it is.
        quantity = 0 if math.isnan(item.quantity) else int(item.quantity)
        counts[tier] += 1
        records.append(AlertRecord(sku=item.sku, tier=tier, quantity=quantity, updated_at=now))

        prior = prior_by_sku.get(item.sku)
        prior_tier = prior.tier if prior else AlertTier.NONE
        if tier == prior_tier:
            continue

        logger.info(f"  > {item.sku}: {prior_tier.value} -> {tier.value} (qty {quantity})")
        alert = AlertItem(
            sku=item.sku,
            display_name=item.display_name,
            quantity=quantity,
            runway_days=round(runway, 1),
            phase_out=item.phase_out,
            tier=tier,
        )
        getattr(batch, tier.value).append(alert)

    if not complete:
        carried = [r for sku, r in prior_by_sku.items() if sku not in evaluated]
        logger.warning(
            f"Alert evaluation stopped at the deadline after {len(evaluated)} SKUs; "
            f"carrying over {len(carried)} previous records."
        )
        records.extend(carried)

    for tier_list in (batch.zero, batch.critical, batch.low):
        tier_list.sort(key=lambda alert: (alert.quantity, alert.sku))

    summary = AlertSummary(
        zero_count=counts[AlertTier.ZERO],
        critical_count=counts[AlertTier.CRITICAL],
        low_count=counts[AlertTier.LOW],
        notified=batch.size,
        complete=complete,
    )
    return AlertOutcome(records=records, batch=batch, summary=summary)
