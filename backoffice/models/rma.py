from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional
from pydantic import BaseModel, Field
from backoffice.models.audit import utcnow
from backoffice.models.base import MongoModel

class DispositionType(str, Enum):
    RESTOCK = "RESTOCK"
    SCRAP = "SCRAP"
    RTV = "RTV"       # return to vendor
    REPAIR = "REPAIR"

class ReasonCode(str, Enum):
    DEFECT = "DEFECT"
    DAMAGED = "DAMAGED"
    UNWANTED = "UNWANTED"
    OTHER = "OTHER"

class RMAStatus(str, Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    CLOSED = "closed"

class AccountingAdjustment(BaseModel):
    type: str # credit_memo, disposal_fee, rtv_charge, repair_invoice
    document_id: str # credit memo or service invoice ID
    gl_journal_id: Optional[str] = None
    amount: float
    posted_at: datetime

class RMALine(BaseModel):
    line_id: str
    sku: str
    variant: Optional[str] = None
    description: str = ""
    qty: float = Field(..., gt=0)
    reason_code: ReasonCode
    unit_price: float = Field(..., ge=0)
    unit_cost: float = Field(..., ge=0)
    disposition: Optional[DispositionType] = None
    disposition_notes: Optional[str] = None
    accounting_adjustments: List[AccountingAdjustment] = []
    status: str = "pending" # pending, posted
    processed_at: Optional[datetime] = None
    processed_by: Optional[str] = None

class RMA(MongoModel):
    key_field: ClassVar[str] = "rma_id"

    rma_id: str
    client_id: str
    client_name: str
    original_invoice_id: str
    status: RMAStatus = RMAStatus.OPEN
    lines: List[RMALine] = []
    created_at: datetime = Field(default_factory=utcnow)
    created_by: str
    updated_at: datetime = Field(default_factory=utcnow)
    updated_by: str

class RMAEvent(MongoModel):
    key_field: ClassVar[str] = "event_id"

    event_id: str
    rma_id: str
    action: str # rma_created, line_added, disposition_assigned, credit_memo_issued, gl_posted
    actor: str
    timestamp: datetime = Field(default_factory=utcnow)
    line_id: Optional[str] = None
    details: Dict[str, Any] = {}

class CreditMemoLine(BaseModel):
    line_id: str
    description: str
    quantity: float
    unit_price: float
    amount: float

class CreditMemo(MongoModel):
    key_field: ClassVar[str] = "credit_memo_id"

    credit_memo_id: str
    client_id: str
    client_name: str
    original_invoice_id: str
    rma_id: str
    lines: List[CreditMemoLine]
    subtotal: float
    taxes: float
    total: float
    issued_at: datetime = Field(default_factory=utcnow)
    created_by: str

class DispositionResult(BaseModel):
    """Artifacts produced by processing one RMA line."""
    invoice_id: Optional[str] = None
    credit_memo_id: Optional[str] = None
    gl_journal_id: Optional[str] = None
    adjustments: List[AccountingAdjustment] = []

class InventoryImpact(BaseModel):
    quantity_change: float = 0.0
    value_change: float = 0.0

class ARImpact(BaseModel):
    amount: float = 0.0
    account: str = ""

class DispositionSimulationResult(BaseModel):
    disposition: DispositionType
    line: RMALine
    inventory_impact: InventoryImpact = Field(default_factory=InventoryImpact)
    ar_impact: ARImpact = Field(default_factory=ARImpact)
    status: str = "success"
    messages: List[str] = []
