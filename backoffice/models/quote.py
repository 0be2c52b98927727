from datetime import datetime
from typing import ClassVar, List, Optional
from pydantic import BaseModel, Field
from backoffice.models.audit import utcnow
from backoffice.models.base import MongoModel
from backoffice.models.finance import CalculationResult, Discount

class BenchmarkRate(BaseModel):
    """Market rate for one mode/service level on a lane."""
    version_id: str
    mode: str # receiving, fulfillment, storage
    service_level: str = ""
    origin_country: str
    origin_state: Optional[str] = None
    origin_zip3: Optional[str] = None
    dest_country: str
    dest_state: Optional[str] = None
    dest_zip3: Optional[str] = None
    effective_start_date: str = ""
    effective_end_date: str = ""
    weight_min_kg: float = 0.0
    weight_max_kg: float = 0.0
    volume_min_cbm: float = 0.0
    volume_max_cbm: float = 0.0
    unit: str = ""
    rate_benchmark: float = 0.0
    currency: str = "USD"
    accessorial_code: Optional[str] = None
    source_tag: str = ""
    confidence: float = Field(0.0, ge=0.0, le=1.0)

class ValueAddedOption(BaseModel):
    version_id: str
    code: str
    name: str
    pricing_type: str
    unit: str
    default_rate: float
    currency: str = "USD"
    category: str = ""
    notes: Optional[str] = None
    source_tag: str = ""
    confidence: float = Field(0.0, ge=0.0, le=1.0)

class LaneEnd(BaseModel):
    country: str
    state: Optional[str] = None
    zip3: Optional[str] = None

class Lane(BaseModel):
    origin: LaneEnd
    dest: LaneEnd

class QuoteVolumes(BaseModel):
    units_received: Optional[float] = None
    orders_shipped: Optional[float] = None

class QuoteAssumptions(BaseModel):
    storage_months: Optional[float] = None

class QuoteItemRequest(BaseModel):
    code: str
    qty: float

class CompetitorBaseline(BaseModel):
    label: str
    amount: float
    currency: str = "USD"

class QuoteInput(BaseModel):
    version_id: str
    lane: Lane
    volumes: QuoteVolumes = Field(default_factory=QuoteVolumes)
    assumptions: QuoteAssumptions = Field(default_factory=QuoteAssumptions)
    vas: List[QuoteItemRequest] = []
    surcharges: List[QuoteItemRequest] = []
    discounts: List[Discount] = []
    competitor_baseline: Optional[CompetitorBaseline] = None

class PricingContext(BaseModel):
    benchmark_rates: List[BenchmarkRate] = []
    value_added_options: List[ValueAddedOption] = []
    version_id: str

class QuoteComparison(BaseModel):
    competitor_label: str
    competitor_amount: float
    delta_amount: float
    delta_percent: float

class QuoteResult(MongoModel):
    key_field: ClassVar[str] = "quote_id"

    quote_id: str
    version_id: str
    totals: CalculationResult
    comparison: Optional[QuoteComparison] = None
    created_at: datetime = Field(default_factory=utcnow)
