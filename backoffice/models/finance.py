from typing import List, Literal, Optional
from pydantic import BaseModel, Field

DiscountType = Literal["flat", "percent"]
RoundingMode = Literal["HALF_UP", "HALF_EVEN"]

class LineItem(BaseModel):
    """One billable unit on an invoice or quote."""
    id: str
    sku: str
    description: str = ""
    qty: float
    unit_price: float
    category: Optional[str] = None
    discountable: bool = Field(True, description="False excludes the line from every discount (e.g. duties)")
    is_surcharge: bool = Field(False, description="Pass-through fee, excluded from non_surcharges discounts")

class Discount(BaseModel):
    id: str
    type: DiscountType
    value: float = Field(..., description="Dollar amount for flat, percentage (0-100) for percent")
    scope: str = Field("all", description="all | non_surcharges | category:<name>")
    description: str = ""

class ProcessedLineItem(LineItem):
    line_subtotal: float = 0.0     # qty x unit_price
    discount_amount: float = 0.0   # accumulated across applied discounts
    after_discounts: float = 0.0
    taxable_amount: float = 0.0

class AppliedDiscount(BaseModel):
    discount_id: str
    description: str = ""
    amount: float = 0.0
    applied_to_lines: List[str] = []

class CalculationResult(BaseModel):
    line_items: List[ProcessedLineItem]
    subtotal: float
    discount_amount: float
    after_discounts: float
    tax_amount: float
    grand_total: float
    applied_discounts: List[AppliedDiscount] = []
