from datetime import date, datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field


class ShipMode(str, Enum):
    AIR = "air"
    SEA = "sea"


class BurnRatePeriod(str, Enum):
    DAYS_7 = "7d"
    DAYS_21 = "21d"
    DAYS_90 = "90d"


class UnknownEtaPolicy(str, Enum):
    """How a sea shipment without an ETA is treated by the sea-gap check."""

    OMIT = "omit"  # left out of the earliest-ETA lookup, row flagged for review
    NEVER_ARRIVES = "never_arrives"  # planned as if the units will not arrive


class ShipType(str, Enum):
    EXPRESS = "Express"
    SLOW_AIR = "Slow Air"
    SEA = "Sea"
    NO_CHINA_INVENTORY = "No CN Inv"
    NO_ACTION = "No Action"
    PHASE_OUT = "Phase Out"


class ProdStatus(str, Enum):
    MONITOR_PRODUCTION = "Monitor Production"
    NO_ACTION = "No Action"
    PUSH_VENDOR = "Push Vendor"
    ORDER_MORE = "Order More"
    PHASE_OUT = "Phase Out"


class AlertTier(str, Enum):
    NONE = "none"
    LOW = "low"
    CRITICAL = "critical"
    ZERO = "zero"


# --- Inventory Snapshot ---


class LocationDetail(BaseModel):
    """Per (SKU, location) quantities as reported by the platform."""

    sku: str
    location: str
    available: int = 0
    on_hand: int = 0
    committed: int = 0
    # Platform-side counter, superseded by the incoming shipment ledger.
    incoming: int = 0
    inventory_item_id: Optional[str] = None


class SkuInventory(BaseModel):
    sku: str
    product_title: str = ""
    variant_title: str = ""
    locations: dict[str, int] = Field(default_factory=dict)

    @computed_field
    @property
    def total_available(self) -> int:
        return sum(self.locations.values())

    def available_at(self, *location_names: str) -> int:
        return sum(self.locations.get(name, 0) for name in location_names)


class InventorySnapshot(BaseModel):
    inventory: list[SkuInventory] = Field(default_factory=list)
    location_details: dict[str, list[LocationDetail]] = Field(default_factory=dict)
    # Display name -> platform location id, needed for adjustment calls.
    location_ids: dict[str, str] = Field(default_factory=dict)
    locations: list[str] = Field(default_factory=list)
    fetched_at: datetime = Field(default_factory=datetime.now)

    @property
    def total_units(self) -> int:
        return sum(item.total_available for item in self.inventory)

    def by_sku(self) -> dict[str, SkuInventory]:
        return {item.sku: item for item in self.inventory}


# --- Secondary Inputs ---


class VelocitySample(BaseModel):
    sku: str
    product_name: str = ""
    avg_daily_7d: float = Field(default=0.0, ge=0)
    avg_daily_21d: float = Field(default=0.0, ge=0)
    avg_daily_90d: float = Field(default=0.0, ge=0)
    avg_daily_last_year_30d: float = Field(default=0.0, ge=0)

    def rate(self, period: BurnRatePeriod) -> float:
        return {
            BurnRatePeriod.DAYS_7: self.avg_daily_7d,
            BurnRatePeriod.DAYS_21: self.avg_daily_21d,
            BurnRatePeriod.DAYS_90: self.avg_daily_90d,
        }[period]


class IncomingShipment(BaseModel):
    sku: str
    destination: str
    mode: ShipMode
    quantity: int = Field(..., ge=0)
    eta: Optional[date] = None


class ProductionOrderPending(BaseModel):
    sku: str
    pending_quantity: int = Field(..., ge=0)


# --- Configuration ---


class AllocationEntry(BaseModel):
    match_label: str = Field(..., min_length=1)
    percentage: float = Field(..., ge=0, le=1)


class VariantAllocation(BaseModel):
    """Target split for one logical SKU sold as several platform variants."""

    sku: str
    location: str = "LA Office"
    allocations: list[AllocationEntry] = Field(default_factory=list)

    def percentage_total(self) -> float:
        return sum(entry.percentage for entry in self.allocations)


class AlertThresholds(BaseModel):
    model_config = ConfigDict(frozen=True)

    critical_threshold: float = 50
    low_threshold: float = 200
    runway_threshold: float = 90


class PlanningConfig(BaseModel):
    """
    Every tunable the engines read. Built once per cycle by
    settings.load_planning_config() and passed down explicitly.
    """

    model_config = ConfigDict(frozen=True)

    version: int = 1
    thresholds: AlertThresholds = Field(default_factory=AlertThresholds)
    target_days: float = Field(default=30, ge=0)
    burn_rate_period: BurnRatePeriod = BurnRatePeriod.DAYS_21
    unknown_eta_policy: UnknownEtaPolicy = UnknownEtaPolicy.OMIT
    # Target met and nothing at sea: False gives need 0, True keeps the
    # sea-gap buffer (0 gap days + buffer) and flags the row for review.
    buffer_without_sea: bool = False
    la_area_locations: list[str] = Field(
        default_factory=lambda: ["LA Office", "DTLA WH"]
    )
    china_location: str = "China WH"
    allocations: list[VariantAllocation] = Field(default_factory=list)
    runway_sentinel: float = 999
    sea_gap_buffer_days: int = 4


# --- Engine Inputs & Outputs ---


class PlanningInput(BaseModel):
    """One row of the planning frame, as fed to the classification engine."""

    sku: str
    product_title: str = ""
    la_available: float = 0
    incoming_air: float = 0
    incoming_sea: float = 0
    sea_eta: Optional[date] = None
    sea_unknown_eta_qty: float = 0
    china_available: float = 0
    pending_production: float = 0
    burn_rate: float = 0
    phase_out: bool = False


class PlanningRow(BaseModel):
    sku: str = Field(..., alias="SKU")
    product_title: str = Field(default="", alias="Product")
    la_available: int = Field(default=0, alias="LA")
    incoming_air: int = Field(default=0, alias="In Air")
    incoming_sea: int = Field(default=0, alias="In Sea")
    sea_eta: Optional[date] = Field(default=None, alias="Sea ETA")
    china_available: int = Field(default=0, alias="China WH")
    pending_production: int = Field(default=0, alias="In Prod")
    burn_rate: float = Field(default=0.0, alias="Burn Rate")
    runway_air: float = Field(default=0.0, alias="Runway Air")
    runway_total: float = Field(default=0.0, alias="LA Runway")
    runway_with_china: float = Field(default=0.0, alias="CN Runway")
    need_quantity: int = Field(default=0, ge=0, alias="Need")
    ship_type: ShipType = Field(..., alias="Ship Type")
    prod_status: ProdStatus = Field(..., alias="Prod Status")
    phase_out: bool = Field(default=False, alias="Phase Out")
    needs_review: bool = Field(default=False, alias="Needs Review")

    class Config:
        # Build from engine dicts by field name, export with report headers.
        populate_by_name = True


class AlertInput(BaseModel):
    sku: str
    display_name: str = ""
    quantity: float = 0
    incoming_air: float = 0
    burn_rate: float = 0
    phase_out: bool = False


class AlertRecord(BaseModel):
    sku: str
    tier: AlertTier
    quantity: int = 0
    updated_at: Optional[datetime] = None


class AlertItem(BaseModel):
    sku: str
    display_name: str = ""
    quantity: int = 0
    runway_days: float = 0.0
    phase_out: bool = False
    tier: AlertTier


class AlertBatch(BaseModel):
    """Everything a single outbound notification carries."""

    zero: list[AlertItem] = Field(default_factory=list)
    critical: list[AlertItem] = Field(default_factory=list)
    low: list[AlertItem] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.zero or self.critical or self.low)

    @property
    def size(self) -> int:
        return len(self.zero) + len(self.critical) + len(self.low)


class AlertSummary(BaseModel):
    zero_count: int = 0
    critical_count: int = 0
    low_count: int = 0
    notified: int = 0
    complete: bool = True


# --- Rebalancer ---


class RebalanceStatus(str, Enum):
    ADJUSTED = "adjusted"
    BALANCED = "balanced"
    SKIPPED = "skipped"
    FAILED = "failed"
    DUPLICATE = "duplicate"


class PlatformVariant(BaseModel):
    variant_id: str
    sku: str
    title: str = ""
    inventory_item_id: Optional[str] = None


class VariantChange(BaseModel):
    inventory_item_id: str
    variant_title: str = ""
    current: int
    target: int

    @property
    def delta(self) -> int:
        return self.target - self.current


class RebalanceResult(BaseModel):
    sku: str
    status: RebalanceStatus
    reason: str = ""
    changes: list[VariantChange] = Field(default_factory=list)
    token: Optional[str] = None


class AlertOutcome(BaseModel):
    """Result of one alert evaluation: the new state set and what to announce."""

    records: list[AlertRecord] = Field(default_factory=list)
    batch: AlertBatch = Field(default_factory=AlertBatch)
    summary: AlertSummary = Field(default_factory=AlertSummary)
