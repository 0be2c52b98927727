from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional
from pydantic import ConfigDict, Field
from backoffice.models.audit import utcnow
from backoffice.models.base import MongoModel
from backoffice.models.finance import CalculationResult, Discount, LineItem, RoundingMode
from backoffice.models.payment import PaymentRecord

class InvoiceStatus(str, Enum):
    DRAFT = "draft"
    ISSUED = "issued"
    PAID = "paid"
    VOID = "void"

class Invoice(MongoModel):
    """
    Customer invoice through its draft -> issued -> paid (or void) lifecycle.
    """
    key_field: ClassVar[str] = "invoice_id"

    invoice_id: str = Field(..., description="Unique invoice ID (INV-YYYY-XXX)")
    invoice_number: Optional[str] = None
    client_id: str
    client_name: str = ""
    vendor_id: Optional[str] = None

    status: InvoiceStatus = Field(default=InvoiceStatus.DRAFT)

    # Pricing inputs
    line_items: List[LineItem] = []
    discounts: List[Discount] = []
    tax_rate: float = 0.0
    rounding_mode: RoundingMode = "HALF_UP"

    # Computed
    totals: Optional[CalculationResult] = None
    payments: List[PaymentRecord] = []
    balance_due: float = 0.0
    gl_journal_id: Optional[str] = None

    # Metadata
    issued_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    voided_at: Optional[datetime] = None
    last_payment_date: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    created_by: str = "system"
    updated_by: str = "system"

    model_config = ConfigDict(json_schema_extra={
            "example": {
                "invoice_id": "INV-2024-001",
                "client_id": "client-001",
                "client_name": "Acme Corporation",
                "status": "issued",
                "line_items": [
                    {"id": "L1", "sku": "PICK_PACK", "qty": 2, "unit_price": 50.0, "discountable": True}
                ],
                "discounts": [
                    {"id": "D1", "type": "percent", "value": 10, "scope": "all"}
                ],
                "tax_rate": 0.08
            }
        }
    )

    @property
    def grand_total(self) -> float:
        return self.totals.grand_total if self.totals else 0.0

class InvoiceLifecycleEvent(MongoModel):
    key_field: ClassVar[str] = "event_id"

    event_id: str
    invoice_id: str
    event: str # invoice_generated, invoice_issued, invoice_paid, invoice_voided
    timestamp: datetime = Field(default_factory=utcnow)
    actor: str
    previous_status: Optional[InvoiceStatus] = None
    new_status: InvoiceStatus
    metadata: Dict[str, Any] = {}
