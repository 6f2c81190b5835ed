import logging

import pandas as pd
from pydantic import ValidationError

from . import settings
from .schemas import (
    IncomingShipment,
    InventorySnapshot,
    LocationDetail,
    ProductionOrderPending,
    ShipMode,
    SkuInventory,
    VelocitySample,
)
from .utils import parse_date

logger = logging.getLogger(__name__)

QUANTITY_COLUMNS = ["available", "on_hand", "committed", "incoming"]

AIR_TRANSFER_TYPES = {"Air Express", "Air Slow"}
SEA_TRANSFER_TYPES = {"Sea"}
ACTIVE_TRANSFER_STATUSES = {"in_transit", "partial"}
OPEN_PRODUCTION_STATUSES = {"in_production", "partial"}

VELOCITY_WINDOW_DAYS = {
    "avg_daily_7d": 7,
    "avg_daily_21d": 21,
    "avg_daily_90d": 90,
    "avg_daily_last_year_30d": 30,
}


def _has_tag(product: dict, tag: str) -> bool:
    tags = product.get("tags") or []
    if isinstance(tags, str):
        tags = tags.split(",")
    return tag in {t.strip().lower() for t in tags}


def parse_inventory_snapshot(
    locations: list[dict],
    products: list[dict],
    levels_by_location: dict[str, list[dict]],
) -> InventorySnapshot:
    """
    Joins platform locations, tagged products and per-location levels into one
    snapshot. Quantities are summed per (SKU, location), since several
    inventory items can carry the same SKU.
    """
    display_names = {
        loc["id"]: settings.LOCATION_DISPLAY_NAMES.get(loc["name"], loc["name"])
        for loc in locations
    }
    location_ids = {name: loc_id for loc_id, name in display_names.items()}
    ordered = [name for name in settings.LOCATION_ORDER if name in location_ids]
    ordered += sorted(name for name in location_ids if name not in ordered)

    # 1. Variant lookup, limited to products tagged for inventory tracking
    variant_rows = [
        {
            "inventory_item_id": str(variant["inventory_item_id"]),
            "sku": variant["sku"],
            "product_title": product.get("title", ""),
            "variant_title": variant.get("title", ""),
        }
        for product in products
        if _has_tag(product, settings.INVENTORIED_TAG)
        for variant in product.get("variants", [])
        if variant.get("sku") and variant.get("inventory_item_id")
    ]
    logger.info(f"Found {len(variant_rows)} variants on products tagged '{settings.INVENTORIED_TAG}'.")

    # 2. Levels, tagged with the location's display name
    level_rows = [
        {
            "location": display_names[loc_id],
            "inventory_item_id": str(level["inventory_item_id"]),
            **{col: level.get(col, 0) or 0 for col in QUANTITY_COLUMNS},
        }
        for loc_id, levels in levels_by_location.items()
        if loc_id in display_names
        for level in levels
    ]

    if not variant_rows or not level_rows:
        return InventorySnapshot(location_ids=location_ids, locations=ordered)

    merged = pd.merge(
        pd.DataFrame(level_rows), pd.DataFrame(variant_rows), on="inventory_item_id", how="inner"
    )

    # 3. Collapse duplicate items per (SKU, location)
    per_location = (
        merged.groupby(["sku", "location"], sort=True)
        .agg(
            product_title=("product_title", "first"),
            variant_title=("variant_title", "first"),
            inventory_item_id=("inventory_item_id", "first"),
            **{col: (col, "sum") for col in QUANTITY_COLUMNS},
        )
        .reset_index()
    )

    inventory = []
    location_details: dict[str, list[LocationDetail]] = {name: [] for name in ordered}
    for sku, group in per_location.groupby("sku", sort=True):
        first = group.iloc[0]
        inventory.append(
            SkuInventory(
                sku=str(sku),
                product_title=str(first["product_title"]),
                variant_title=str(first["variant_title"]),
                locations={
                    str(row["location"]): int(row["available"])
                    for _, row in group.iterrows()
                },
            )
        )
        for _, row in group.iterrows():
            location_details.setdefault(row["location"], []).append(
                LocationDetail(
                    sku=str(sku),
                    location=str(row["location"]),
                    inventory_item_id=str(row["inventory_item_id"]),
                    **{col: int(row[col]) for col in QUANTITY_COLUMNS},
                )
            )

    return InventorySnapshot(
        inventory=inventory,
        location_details=location_details,
        location_ids=location_ids,
        locations=ordered,
    )


def parse_velocity(sales_by_window: dict[str, list[dict]]) -> list[VelocitySample]:
    """
    Converts per-window unit totals ({sku, product_name, quantity} rows keyed
    by VelocitySample field name) into average units per day.
    """
    frames = []
    for field_name, rows in sales_by_window.items():
        if not rows:
            continue
        frame = pd.DataFrame(rows)
        frame["window"] = field_name
        frames.append(frame)

    if not frames:
        return []

    sales = pd.concat(frames, ignore_index=True)
    sales = sales[sales["sku"].astype(str).str.len() > 0]
    sales["quantity"] = pd.to_numeric(sales["quantity"], errors="coerce").fillna(0)

    totals = sales.pivot_table(
        index="sku", columns="window", values="quantity", aggfunc="sum", fill_value=0
    )
    names = sales.groupby("sku")["product_name"].first() if "product_name" in sales else {}

    samples = []
    for sku, row in totals.iterrows():
        values = {
            field_name: max(float(row.get(field_name, 0)), 0.0) / days
            for field_name, days in VELOCITY_WINDOW_DAYS.items()
        }
        samples.append(
            VelocitySample(sku=str(sku), product_name=str(names.get(sku, "") or ""), **values)
        )
    return samples


def _remaining_quantity(item: dict) -> int:
    return int(item.get("quantity", 0)) - int(item.get("receivedQuantity") or 0)


def parse_incoming_transfers(transfers: list[dict]) -> list[IncomingShipment]:
    """
    In-transit and partially received transfers become incoming shipments,
    one per (transfer, SKU) with the not-yet-received quantity.
    """
    shipments = []
    for transfer in transfers:
        if transfer.get("status") not in ACTIVE_TRANSFER_STATUSES:
            continue

        transfer_type = transfer.get("transferType")
        if transfer_type in AIR_TRANSFER_TYPES:
            mode = ShipMode.AIR
        elif transfer_type in SEA_TRANSFER_TYPES:
            mode = ShipMode.SEA
        else:
            # Immediate moves never show up as incoming.
            continue

        eta = parse_date(transfer.get("eta"))
        for item in transfer.get("items", []):
            try:
                remaining = _remaining_quantity(item)
                if remaining <= 0:
                    continue
                shipments.append(
                    IncomingShipment(
                        sku=item["sku"],
                        destination=transfer.get("destination", ""),
                        mode=mode,
                        quantity=remaining,
                        eta=eta,
                    )
                )
            except (KeyError, TypeError, ValueError, ValidationError) as e:
                logger.warning(f"Skipping item on transfer {transfer.get('id')}: {e}")

    logger.info(f"Parsed {len(shipments)} incoming shipment lines.")
    return shipments


def parse_production_orders(orders: list[dict]) -> list[ProductionOrderPending]:
    """Pending = ordered - received, for orders still in production or partially delivered."""
    rows = []
    for order in orders:
        if order.get("status") not in OPEN_PRODUCTION_STATUSES:
            continue
        for item in order.get("items", []):
            if not item.get("sku"):
                continue
            try:
                remaining = _remaining_quantity(item)
            except (TypeError, ValueError) as e:
                logger.warning(f"Skipping item {item.get('sku')!r} on production order {order.get('id')}: {e}")
                continue
            if remaining > 0:
                rows.append({"sku": item["sku"], "pending": remaining})
    if not rows:
        return []

    pending = pd.DataFrame(rows).groupby("sku")["pending"].sum()
    return [
        ProductionOrderPending(sku=str(sku), pending_quantity=int(qty))
        for sku, qty in pending.items()
    ]


def parse_phase_out(document: dict | None) -> set[str]:
    if not document:
        return set()
    return {
        str(entry["sku"]).strip()
        for entry in document.get("skus", [])
        if isinstance(entry, dict) and entry.get("sku")
    }
