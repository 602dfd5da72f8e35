"""
Quote data model.

Raw products come from the extractors, resolved products from the resolver +
edge rules, and every result aggregate is a pure function of
(resolved products, quote parameters, rate configuration).  Entities that must
not change after creation are frozen.
"""
from __future__ import annotations

from typing import Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


ProductSource = Literal["catalogue", "user-inputted", "learned", "default"]
VanType = Literal["oneMan", "twoMan"]
OutOfHoursType = Literal["weekday_evening", "saturday", "sunday_bank_holiday"]
ParseMethod = Literal["fast", "accurate", "accurate_fallback_fast"]
ParseMode = Literal["fast", "accurate", "hybrid"]


# ── Products ──────────────────────────────────────────────────────────────────

class RawProduct(BaseModel):
    """A single line item as extracted from the source document."""
    model_config = ConfigDict(frozen=True)

    line_number: int = Field(..., description="Line number in the source document")
    product_code: str = Field(..., description="Product code, ES-/ESSENTIALS_ prefix removed")
    raw_description: str = Field("", description="Full unmodified line text")
    clean_description: str = Field("", description="Product type + dimensions only")
    quantity: int = Field(..., description="Item quantity (sanity-checked by the resolver)")
    confidence: Optional[float] = Field(None, ge=0, le=1, description="Extraction confidence 0-1")


class CatalogueEntry(BaseModel):
    """Reference install time and waste for one canonical product key."""
    model_config = ConfigDict(frozen=True)

    install_time_hours: float = Field(..., ge=0)
    waste_volume_m3: float = Field(0.035, ge=0)
    is_heavy: bool = False


class ResolvedProduct(RawProduct):
    """RawProduct with its resolved times, waste and provenance."""
    description: str
    time_per_unit: float
    total_time: float
    waste_per_unit: float
    total_waste: float
    is_heavy: bool
    source: ProductSource
    matched_key: Optional[str] = None


# ── Job inputs ────────────────────────────────────────────────────────────────

class QuoteParameters(BaseModel):
    """Job-level inputs supplied with the quote. Read-only to the engines."""
    model_config = ConfigDict(frozen=True)

    uplift_via_stairs: bool = False
    extended_uplift: bool = False
    custom_extended_uplift_days: float = Field(0, ge=0)
    custom_extended_uplift_fitters: Optional[int] = Field(None, ge=0)
    uplift_supervisor: bool = False
    specialist_reworking: bool = False
    manually_add_supervisor: bool = False
    override_fitter_count: Optional[int] = Field(None, ge=0)
    override_supervisor_count: Optional[int] = Field(None, ge=0)
    override_van_type: Optional[VanType] = None
    override_waste_volume_m3: Optional[float] = Field(None, ge=0)
    daily_parking_charge: Optional[float] = Field(None, ge=0)
    selected_vehicles: Dict[str, int] = Field(default_factory=dict)
    out_of_hours_working: bool = False
    out_of_hours_type: Optional[OutOfHoursType] = None
    out_of_hours_days: float = Field(0, ge=0)


# ── Rate configuration ────────────────────────────────────────────────────────

class PricingRates(BaseModel):
    """Day rates charged to the client (GBP)."""
    one_man_van_day_rate: float = 325.0
    two_man_van_day_rate: float = 550.0
    additional_fitter_day_rate: float = 185.0
    supervisor_day_rate: float = 245.0
    specialist_reworking_flat_rate: float = 740.0
    default_daily_parking_charge: float = Field(75.0, ge=0)
    # Applied to the labour subtotal only
    out_of_hours_multipliers: Dict[str, float] = Field(
        default_factory=lambda: {
            "weekday_evening": 1.50,
            "saturday": 2.00,
            "sunday_bank_holiday": 2.25,
        }
    )


class RuleSettings(BaseModel):
    """Scheduling and buffer rules."""
    hours_per_day: float = Field(8.0, gt=0)
    uplift_stairs_buffer_percent: float = 15.0
    extended_uplift_buffer_percent: float = 10.0
    duration_buffer_baseline_percent: float = Field(25.0, ge=0)
    # (hours threshold, minimum buffer %), applied in order as max(current, floor)
    duration_buffer_floors: List[Tuple[float, float]] = Field(
        default_factory=lambda: [(16.0, 10.0), (40.0, 15.0)]
    )
    default_waste_volume_m3: float = 0.035
    supervisor_threshold_days: float = 4.0
    max_fitters: int = Field(8, ge=1)
    max_uplift_fitters: int = Field(6, ge=0)
    waste_flag_threshold_m3: float = 1.0


class Vehicle(BaseModel):
    id: str
    name: str
    cost_per_day: float = Field(..., ge=0)


class RateConfiguration(BaseModel):
    """Everything the engines need that is not part of the job itself."""
    pricing: PricingRates = Field(default_factory=PricingRates)
    rules: RuleSettings = Field(default_factory=RuleSettings)
    vehicles: Dict[str, Vehicle] = Field(default_factory=dict)
    product_catalogue: Dict[str, CatalogueEntry] = Field(default_factory=dict)


# ── Results ───────────────────────────────────────────────────────────────────

class LabourResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_hours: float
    uplift_buffer_percentage: float
    hours_after_uplift: float
    duration_buffer_percentage: float
    buffered_hours: float
    total_days: float


class CrewResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    crew_size: int
    total_fitters: int
    van_count: int
    van_fitters: int
    on_foot_fitters: int
    supervisor_count: int
    specialist_count: int
    installation_days: float
    total_project_days: float
    days_per_fitter: float
    hour_load_per_person: float
    is_two_man_van_required: bool


class WasteResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_volume_m3: float
    loads_required: float
    is_flagged: bool


class PricingResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    van_cost: float
    fitter_cost: float
    supervisor_cost: float
    labour_cost_after_surcharge: float
    reworking_cost: float
    parking_cost: float
    transport_cost: float
    billable_days: float
    standard_cost: float
    total_cost: float
    out_of_hours_surcharge: float = 0.0
    out_of_hours_multiplier: float = 1.0
    out_of_hours_ratio: float = 0.0


class QuoteNotes(BaseModel):
    parking: str
    mileage: str
    ulez: str
    delivery: str


class CalculationResults(BaseModel):
    model_config = ConfigDict(frozen=True)

    labour: LabourResult
    crew: CrewResult
    waste: WasteResult
    pricing: PricingResult
    notes: QuoteNotes
    detailed_products: List[ResolvedProduct]


# ── Parsing ───────────────────────────────────────────────────────────────────

class Attachment(BaseModel):
    """Binary document part (base64 payload) handed to the extractors."""
    model_config = ConfigDict(frozen=True)

    mime_type: str
    data: str


class QuoteDetails(BaseModel):
    client: Optional[str] = None
    project: Optional[str] = None
    quote_ref: Optional[str] = None
    delivery_address: Optional[str] = None
    collection_address: Optional[str] = None


class ParseResult(BaseModel):
    products: List[RawProduct] = Field(default_factory=list)
    excluded_products: List[RawProduct] = Field(default_factory=list)
    details: QuoteDetails = Field(default_factory=QuoteDetails)
    confidence_score: float = Field(0.0, ge=0, le=100)
    method: ParseMethod
    warnings: List[str] = Field(default_factory=list)
    duration_ms: float = 0.0
    attempts: int = 1
    cache_age_ms: Optional[float] = None
