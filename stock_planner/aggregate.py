import logging

import pandas as pd

from .schemas import (
    AlertInput,
    BurnRatePeriod,
    IncomingShipment,
    InventorySnapshot,
    PlanningConfig,
    PlanningInput,
    ProductionOrderPending,
    ShipMode,
    VelocitySample,
)

logger = logging.getLogger(__name__)

# Alerting always uses the 21-day window, whatever the planning view shows.
ALERT_BURN_RATE_PERIOD = BurnRatePeriod.DAYS_21

FRAME_COLUMNS = [
    "sku",
    "product_title",
    "display_name",
    "la_available",
    "china_available",
    "incoming_air",
    "incoming_sea",
    "sea_eta",
    "sea_unknown_eta_qty",
    "pending_production",
    "burn_rate",
    "burn_rate_alert",
    "phase_out",
]


def _display_name(product_title: str, variant_title: str) -> str:
    if variant_title and variant_title != "Default Title":
        return f"{product_title} - {variant_title}"
    return product_title


def _shipment_totals(shipments: list[IncomingShipment], destinations: list[str]) -> pd.DataFrame:
    columns = ["incoming_air", "incoming_sea", "sea_eta", "sea_unknown_eta_qty"]
    rows = [s.model_dump(mode="json") for s in shipments if s.destination in destinations]
    if not rows:
        return pd.DataFrame(columns=columns, index=pd.Index([], name="sku"))

    ledger = pd.DataFrame(rows)
    ledger["eta"] = pd.to_datetime(ledger["eta"])
    air = ledger[ledger["mode"] == ShipMode.AIR.value]
    sea = ledger[ledger["mode"] == ShipMode.SEA.value]

    totals = pd.DataFrame(
        {
            "incoming_air": air.groupby("sku")["quantity"].sum(),
            "incoming_sea": sea.groupby("sku")["quantity"].sum(),
            "sea_eta": sea.dropna(subset=["eta"]).groupby("sku")["eta"].min(),
            "sea_unknown_eta_qty": sea[sea["eta"].isna()].groupby("sku")["quantity"].sum(),
        }
    )
    totals.index.name = "sku"
    return totals


def build_planning_frame(
    snapshot: InventorySnapshot,
    velocity: list[VelocitySample],
    shipments: list[IncomingShipment],
    production: list[ProductionOrderPending],
    phase_out: set[str],
    config: PlanningConfig,
) -> pd.DataFrame:
    """
    One row per snapshot SKU with every input the engines need. Secondary
    sources are left-joined, so a SKU missing from one of them reads as zero.
    """
    base = pd.DataFrame(
        [
            {
                "sku": item.sku,
                "product_title": item.product_title,
                "display_name": _display_name(item.product_title, item.variant_title),
                "la_available": item.available_at(*config.la_area_locations),
                "china_available": item.locations.get(config.china_location, 0),
            }
            for item in snapshot.inventory
        ],
        columns=["sku", "product_title", "display_name", "la_available", "china_available"],
    )
    if base.empty:
        return pd.DataFrame(columns=FRAME_COLUMNS)

    rates = pd.DataFrame(
        [
            {
                "sku": sample.sku,
                "burn_rate": sample.rate(config.burn_rate_period),
                "burn_rate_alert": sample.rate(ALERT_BURN_RATE_PERIOD),
            }
            for sample in velocity
        ],
        columns=["sku", "burn_rate", "burn_rate_alert"],
    ).groupby("sku").sum()

    pending = pd.DataFrame(
        [{"sku": p.sku, "pending_production": p.pending_quantity} for p in production],
        columns=["sku", "pending_production"],
    ).groupby("sku").sum()

    incoming = _shipment_totals(shipments, config.la_area_locations)

    frame = (
        base.set_index("sku")
        .join(incoming, how="left")
        .join(rates, how="left")
        .join(pending, how="left")
        .reset_index()
    )
    # Empty sources can leave columns out of the join.
    frame = frame.reindex(columns=[c for c in FRAME_COLUMNS if c != "phase_out"])

    numeric = [
        "incoming_air",
        "incoming_sea",
        "sea_unknown_eta_qty",
        "pending_production",
        "burn_rate",
        "burn_rate_alert",
    ]
    frame[numeric] = frame[numeric].apply(pd.to_numeric, errors="coerce").fillna(0)
    frame["sea_eta"] = [
        ts.date() if pd.notna(ts) else None for ts in pd.to_datetime(frame["sea_eta"])
    ]
    frame["phase_out"] = frame["sku"].isin(list(phase_out))

    logger.info(
        f"Planning frame: {len(frame)} SKUs, {int((frame['incoming_air'] + frame['incoming_sea'] > 0).sum())} with incoming, "
        f"{int(frame['phase_out'].sum())} phase-out."
    )
    return frame[FRAME_COLUMNS]


def to_planning_inputs(frame: pd.DataFrame) -> list[PlanningInput]:
    return [
        PlanningInput(
            sku=str(row["sku"]),
            product_title=str(row["product_title"]),
            la_available=float(row["la_available"]),
            incoming_air=float(row["incoming_air"]),
            incoming_sea=float(row["incoming_sea"]),
            sea_eta=row["sea_eta"],
            sea_unknown_eta_qty=float(row["sea_unknown_eta_qty"]),
            china_available=float(row["china_available"]),
            pending_production=float(row["pending_production"]),
            burn_rate=float(row["burn_rate"]),
            phase_out=bool(row["phase_out"]),
        )
        for row in frame.to_dict("records")
    ]


def to_alert_inputs(frame: pd.DataFrame) -> list[AlertInput]:
    return [
        AlertInput(
            sku=str(row["sku"]),
            display_name=str(row["display_name"]),
            quantity=float(row["la_available"]),
            incoming_air=float(row["incoming_air"]),
            burn_rate=float(row["burn_rate_alert"]),
            phase_out=bool(row["phase_out"]),
        )
        for row in frame.to_dict("records")
    ]
