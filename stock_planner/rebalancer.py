"""
Re-evens stock between platform variants that represent one logical SKU.

Sales deplete each variant independently, so their ratio drifts from the
configured split. A pass redistributes the combined quantity back to the
target percentages without creating or destroying units.
"""

import hashlib
import json
import logging
from typing import Optional

from .errors import PlatformError
from .schemas import (
    AllocationEntry,
    PlatformVariant,
    RebalanceResult,
    RebalanceStatus,
    VariantAllocation,
    VariantChange,
)
from .sources import VariantPlatform
from .utils import round_half_up

logger = logging.getLogger(__name__)

PERCENTAGE_TOLERANCE = 1e-6


def compute_targets(total: int, allocations: list[AllocationEntry]) -> list[int]:
    """
    Target quantity per allocation entry, in order. The last entry takes the
    exact remainder so the targets always add up to `total`.
    """
    targets = []
    assigned = 0
    for index, entry in enumerate(allocations):
        if index == len(allocations) - 1:
            targets.append(total - assigned)
        else:
            target = round_half_up(total * entry.percentage)
            targets.append(target)
            assigned += target
    return targets


def match_variants(
    variants: list[PlatformVariant], allocations: list[AllocationEntry]
) -> Optional[list[PlatformVariant]]:
    """
    Pairs each allocation entry with the one variant whose title contains its
    label. Returns None unless every entry matches exactly one distinct variant.
    """
    matched = []
    for entry in allocations:
        label = entry.match_label.lower()
        hits = [v for v in variants if label in (v.title or "").lower()]
        if len(hits) != 1:
            return None
        matched.append(hits[0])

    if len({v.inventory_item_id for v in matched}) != len(allocations):
        return None
    return matched


def rebalance_token(location_id: str, changes: list[VariantChange], cycle_id: str = "") -> str:
    """Id for one adjustment batch within one refresh cycle."""
    payload = json.dumps(
        {
            "cycle": cycle_id,
            "location": location_id,
            "changes": sorted(
                [c.inventory_item_id, c.current, c.target] for c in changes
            ),
        },
        sort_keys=True,
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class VariantRebalancer:
    def __init__(self, platform: VariantPlatform, location_ids: dict[str, str], ledger=None):
        self.platform = platform
        self.location_ids = location_ids
        # Anything with seen(token) / record(token); see data_handler.RebalanceLedger.
        self.ledger = ledger

    def rebalance_all(
        self, allocations: list[VariantAllocation], cycle_id: str = ""
    ) -> list[RebalanceResult]:
        logger.info(f"--- Rebalancing {len(allocations)} multi-variant SKUs ---")
        results = [self.rebalance(allocation, cycle_id) for allocation in allocations]

        adjusted = sum(1 for r in results if r.status == RebalanceStatus.ADJUSTED)
        logger.info(f"Rebalance finished: {adjusted}/{len(results)} SKU groups adjusted.")
        return results

    def rebalance(self, allocation: VariantAllocation, cycle_id: str = "") -> RebalanceResult:
        sku = allocation.sku

        if len(allocation.allocations) < 2:
            return self._skip(sku, "fewer than two allocation entries")
        if abs(allocation.percentage_total() - 1.0) > PERCENTAGE_TOLERANCE:
            return self._skip(sku, f"percentages sum to {allocation.percentage_total():.4f}, not 1")

        location_id = self.location_ids.get(allocation.location)
        if location_id is None:
            return self._skip(sku, f"unknown location {allocation.location!r}")

        # 1. Resolve variants
        try:
            variants = self.platform.find_variants(sku)
        except PlatformError as e:
            return self._fail(sku, f"variant lookup failed: {e}")
        variants = [v for v in variants if v.inventory_item_id]
        if len(variants) < 2:
            return self._skip(sku, f"found {len(variants)} stocked variants, need at least 2")

        # 2. Current quantities at the location
        try:
            available = self.platform.fetch_available(
                location_id, [v.inventory_item_id for v in variants]
            )
        except PlatformError as e:
            return self._fail(sku, f"quantity lookup failed: {e}")

        # 3. One variant per allocation entry
        matched = match_variants(variants, allocation.allocations)
        if matched is None:
            titles = ", ".join(v.title for v in variants)
            return self._skip(sku, f"variants [{titles}] do not match allocation labels 1:1")

        # 4-5. Targets
        current = [int(available.get(v.inventory_item_id, 0)) for v in matched]
        total = sum(current)
        if total <= 0:
            return self._skip(sku, "no stock to distribute")
        targets = compute_targets(total, allocation.allocations)

        # 6. Deltas
        changes = [
            VariantChange(
                inventory_item_id=variant.inventory_item_id,
                variant_title=variant.title,
                current=qty,
                target=target,
            )
            for variant, qty, target in zip(matched, current, targets)
            if target != qty
        ]
        if not changes:
            logger.info(f"  > {sku}: already at target split.")
            return RebalanceResult(sku=sku, status=RebalanceStatus.BALANCED)

        token = rebalance_token(location_id, changes, cycle_id)
        if self.ledger is not None and self.ledger.seen(token):
            logger.info(f"  > {sku}: batch {token[:12]} already applied, skipping.")
            return RebalanceResult(
                sku=sku, status=RebalanceStatus.DUPLICATE, changes=changes, token=token
            )

        # 7. Single batched adjustment
        try:
            self.platform.adjust_quantities(
                location_id,
                [(c.inventory_item_id, c.delta) for c in changes],
                reference=token,
            )
        except PlatformError as e:
            return self._fail(sku, f"adjustment failed: {e}")

        if self.ledger is not None:
            self.ledger.record(token)

        summary = ", ".join(f"{c.variant_title} {c.current}->{c.target}" for c in changes)
        logger.info(f"  > {sku}: rebalanced ({summary}).")
        return RebalanceResult(
            sku=sku, status=RebalanceStatus.ADJUSTED, changes=changes, token=token
        )

    @staticmethod
    def _skip(sku: str, reason: str) -> RebalanceResult:
        logger.warning(f"  > {sku}: rebalance skipped, {reason}.")
        return RebalanceResult(sku=sku, status=RebalanceStatus.SKIPPED, reason=reason)

    @staticmethod
    def _fail(sku: str, reason: str) -> RebalanceResult:
        logger.error(f"  > {sku}: {reason}")
        return RebalanceResult(sku=sku, status=RebalanceStatus.FAILED, reason=reason)
