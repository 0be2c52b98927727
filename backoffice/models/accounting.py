from datetime import datetime
from typing import ClassVar, List, Literal, Optional
from pydantic import BaseModel, Field
from backoffice.config import settings
from backoffice.models.base import MongoModel

GlModule = Literal["billing", "rma", "payments"]

class GlEntry(BaseModel):
    """One account line of a journal. Exactly one of debit/credit is non-zero."""
    acct: str = Field(..., description="Chart of accounts code")
    debit: float = 0.0
    credit: float = 0.0
    memo: Optional[str] = None

class GlSourceRef(BaseModel):
    invoice_id: Optional[str] = None
    rma_id: Optional[str] = None
    rma_line_id: Optional[str] = None
    payment_id: Optional[str] = None

class GlSource(BaseModel):
    """Batch of entries handed to post_gl by a money-moving workflow."""
    version: str = Field(default_factory=lambda: settings.GL_VERSION)
    module: GlModule
    source_ref: GlSourceRef = Field(default_factory=GlSourceRef)
    entries: List[GlEntry]

class GlPostResult(BaseModel):
    journal_id: str
    debits: float
    credits: float
    at: datetime

class GlJournal(MongoModel):
    """Canonical posted journal, persisted by the caller."""
    key_field: ClassVar[str] = "journal_id"

    journal_id: str
    version: str
    module: GlModule
    source_ref: GlSourceRef
    description: Optional[str] = None
    entries: List[GlEntry]
    total_debits: float
    total_credits: float
    status: str = "posted"
    posted_at: datetime
    posted_by: str = "system"
