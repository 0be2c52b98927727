from datetime import datetime
from typing import ClassVar, Dict, Literal, Optional
from pydantic import BaseModel, Field
from backoffice.models.accounting import GlPostResult
from backoffice.models.audit import utcnow
from backoffice.models.base import MongoModel

PaymentMethod = Literal["cash", "check", "ach", "wire", "card"]
PAYMENT_METHODS = ("cash", "check", "ach", "wire", "card")

class PaymentRecord(MongoModel):
    key_field: ClassVar[str] = "payment_id"

    payment_id: str
    invoice_id: str
    amount: float
    method: PaymentMethod
    payment_date: str = Field(..., description="ISO date, YYYY-MM-DD")
    reference: Optional[str] = None # Check number, bank txn id
    notes: Optional[str] = None
    gl_journal_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    created_by: str = "system"

class InvoicePaymentStatus(BaseModel):
    invoice_id: str
    previous_status: str
    new_status: str
    balance_due: float

class PaymentResult(BaseModel):
    payment: PaymentRecord
    invoice: InvoicePaymentStatus
    gl_posted: Optional[GlPostResult] = None

class MethodTotals(BaseModel):
    count: int = 0
    total: float = 0.0

class PaymentSummary(BaseModel):
    total_payments: float
    payment_count: int
    average_payment: float
    payments_by_method: Dict[str, MethodTotals]
