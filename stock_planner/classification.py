"""
Shipping and production recommendations per SKU.

Everything here is a pure function of its inputs: no I/O, no clock reads
(the caller passes `today`), no module-level configuration. Malformed
quantities are clamped to zero; callers use find_data_quality_issues() to
log them.
"""

import math
from datetime import date, timedelta

from .schemas import (
    PlanningConfig,
    PlanningInput,
    PlanningRow,
    ProdStatus,
    ShipType,
    UnknownEtaPolicy,
)
from .utils import clamp_quantity, is_malformed_quantity, runway_days

# Days-of-stock bands for the ship type recommendation.
EXPRESS_MAX_DAYS = 15
SLOW_AIR_MAX_DAYS = 60
SEA_MAX_DAYS = 90
NO_CHINA_MIN_DAYS = 60

# CN runway at or below this means production needs attention.
PRODUCTION_RUNWAY_DAYS = 90

# Most urgent first, for sorting the planning table.
SHIP_TYPE_PRIORITY = {
    ShipType.EXPRESS: 1,
    ShipType.NO_CHINA_INVENTORY: 2,
    ShipType.SLOW_AIR: 3,
    ShipType.SEA: 4,
    ShipType.NO_ACTION: 5,
    ShipType.PHASE_OUT: 6,
}

QUANTITY_FIELDS = (
    "la_available",
    "incoming_air",
    "incoming_sea",
    "sea_unknown_eta_qty",
    "china_available",
    "pending_production",
    "burn_rate",
)


def find_data_quality_issues(item: PlanningInput) -> list[str]:
    """Names every quantity field that will be clamped to zero."""
    return [
        f"{name}={getattr(item, name)!r}"
        for name in QUANTITY_FIELDS
        if is_malformed_quantity(getattr(item, name))
    ]


def runway_air_expiry(today: date, runway_air: float) -> date:
    """The day LA stock plus air shipments run out."""
    return today + timedelta(days=math.floor(runway_air))


def calculate_need(
    la_available: float,
    incoming_air: float,
    known_sea: float,
    unknown_sea: float,
    sea_eta: date | None,
    burn_rate: float,
    today: date,
    config: PlanningConfig,
) -> tuple[int, bool]:
    """
    Units to air-ship now, and whether the answer hinged on an unknown sea ETA.

    First a plain shortfall against target days of stock. When the target is
    met, checks whether the earliest sea shipment lands before LA + air stock
    runs out; if it does not, covers the gap plus a buffer.
    """
    if config.unknown_eta_policy == UnknownEtaPolicy.NEVER_ARRIVES:
        sea_total = known_sea
    else:
        sea_total = known_sea + unknown_sea

    target = config.target_days * burn_rate
    on_hand_total = la_available + incoming_air + sea_total
    if target > on_hand_total:
        return _units(target - on_hand_total), False

    if sea_total <= 0:
        # Nothing at sea and LA + air already meet the target.
        if config.buffer_without_sea:
            return _units(config.sea_gap_buffer_days * burn_rate), True
        return 0, False

    runway_air = runway_days(la_available + incoming_air, burn_rate, config.runway_sentinel)
    expiry = runway_air_expiry(today, runway_air)
    buffer = config.sea_gap_buffer_days
    review = config.unknown_eta_policy == UnknownEtaPolicy.OMIT and unknown_sea > 0

    if sea_eta is None:
        return _units(buffer * burn_rate), True

    if sea_eta > expiry:
        gap_days = (sea_eta - expiry).days
        return _units((gap_days + buffer) * burn_rate), review

    return 0, review


def classify_ship_type(
    la_available: float,
    incoming_air: float,
    effective_sea: float,
    china_available: float,
    burn_rate: float,
    phase_out: bool,
    sentinel: float = 999,
) -> ShipType:
    if phase_out:
        return ShipType.PHASE_OUT

    days_of_stock = runway_days(la_available + incoming_air + effective_sea, burn_rate, sentinel)

    if china_available > 0:
        if days_of_stock <= EXPRESS_MAX_DAYS:
            return ShipType.EXPRESS
        if days_of_stock <= SLOW_AIR_MAX_DAYS:
            return ShipType.SLOW_AIR
        if days_of_stock <= SEA_MAX_DAYS:
            return ShipType.SEA
        return ShipType.NO_ACTION

    if days_of_stock < NO_CHINA_MIN_DAYS:
        return ShipType.NO_CHINA_INVENTORY
    return ShipType.NO_ACTION


def classify_prod_status(
    runway_with_china: float, pending_production: float, phase_out: bool
) -> ProdStatus:
    if phase_out:
        return ProdStatus.PHASE_OUT

    has_open_order = pending_production > 0
    if runway_with_china > PRODUCTION_RUNWAY_DAYS:
        return ProdStatus.MONITOR_PRODUCTION if has_open_order else ProdStatus.NO_ACTION
    return ProdStatus.PUSH_VENDOR if has_open_order else ProdStatus.ORDER_MORE


def classify_sku(item: PlanningInput, config: PlanningConfig, today: date) -> PlanningRow:
    la = clamp_quantity(item.la_available)
    air = clamp_quantity(item.incoming_air)
    sea = clamp_quantity(item.incoming_sea)
    china = clamp_quantity(item.china_available)
    pending = clamp_quantity(item.pending_production)
    burn = clamp_quantity(item.burn_rate)
    sentinel = config.runway_sentinel

    # Without any ETA the whole sea quantity is of unknown arrival.
    if item.sea_eta is None:
        unknown_sea = sea
    else:
        unknown_sea = min(clamp_quantity(item.sea_unknown_eta_qty), sea)
    known_sea = sea - unknown_sea

    if config.unknown_eta_policy == UnknownEtaPolicy.NEVER_ARRIVES:
        planning_sea = known_sea
    else:
        planning_sea = sea

    runway_air = runway_days(la + air, burn, sentinel)
    runway_total = runway_days(la + air + planning_sea, burn, sentinel)
    runway_with_china = runway_days(la + air + planning_sea + china, burn, sentinel)

    need, needs_review = calculate_need(
        la, air, known_sea, unknown_sea, item.sea_eta, burn, today, config
    )

    expiry = runway_air_expiry(today, runway_air)
    arrives_in_time = item.sea_eta is not None and item.sea_eta < expiry
    effective_sea = known_sea if arrives_in_time else 0.0

    return PlanningRow(
        sku=item.sku,
        product_title=item.product_title,
        la_available=int(la),
        incoming_air=int(air),
        incoming_sea=int(sea),
        sea_eta=item.sea_eta,
        china_available=int(china),
        pending_production=int(pending),
        burn_rate=round(burn, 2),
        runway_air=round(runway_air, 1),
        runway_total=round(runway_total, 1),
        runway_with_china=round(runway_with_china, 1),
        need_quantity=need,
        ship_type=classify_ship_type(la, air, effective_sea, china, burn, item.phase_out, sentinel),
        prod_status=classify_prod_status(runway_with_china, pending, item.phase_out),
        phase_out=item.phase_out,
        needs_review=needs_review,
    )


def sort_by_urgency(rows: list[PlanningRow]) -> list[PlanningRow]:
    return sorted(rows, key=lambda row: (SHIP_TYPE_PRIORITY[row.ship_type], row.runway_air, row.sku))


def _units(value: float) -> int:
    # Round away float noise before ceiling (30 * 1.1 - 33 must not become 1).
    return max(0, math.ceil(round(value, 6)))
