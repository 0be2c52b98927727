import logging
import threading
import uuid
from typing import List, Optional, Sequence

from backoffice.config import settings
from backoffice.database import Database
from backoffice.errors import InvalidStateError, NotFoundError
from backoffice.guardrails.audit_logger import EventSink, emit
from backoffice.guardrails.permissions import PermissionChecker, Role
from backoffice.models.accounting import GlSource, GlSourceRef
from backoffice.models.audit import utcnow
from backoffice.models.finance import Discount, LineItem, RoundingMode
from backoffice.models.invoice import Invoice, InvoiceLifecycleEvent, InvoiceStatus
from backoffice.tools.finance_math import calculate_totals
from backoffice.tools.gl_posting import build_journal, create_invoice_gl_entries, post_gl

logger = logging.getLogger(__name__)

LIFECYCLE_EVENTS = {
    InvoiceStatus.DRAFT: "invoice_generated",
    InvoiceStatus.ISSUED: "invoice_issued",
    InvoiceStatus.PAID: "invoice_paid",
    InvoiceStatus.VOID: "invoice_voided",
}

class BillingService:
    """
    Invoice drafting and issuance. Issuing posts the receivable/revenue
    journal for the grand total.
    """

    def __init__(self, db: Database, permissions: Optional[PermissionChecker] = None, sink: Optional[EventSink] = None):
        self.db = db
        self.permissions = permissions or PermissionChecker(sink)
        self.sink = sink
        self._events: List[InvoiceLifecycleEvent] = []
        self._lock = threading.Lock()

    async def create_draft(self,
                           invoice_id: str,
                           client_id: str,
                           client_name: str,
                           line_items: Sequence[LineItem],
                           discounts: Sequence[Discount] = (),
                           tax_rate: Optional[float] = None,
                           rounding_mode: Optional[RoundingMode] = None,
                           actor: str = "system",
                           role: str = Role.FINANCE,
                           vendor_id: Optional[str] = None) -> Invoice:
        self.permissions.server_guard(role, "invoice:create", actor)

        if await self.db.invoices.get(invoice_id):
            raise InvalidStateError(f"Invoice {invoice_id} already exists")

        tax_rate = settings.DEFAULT_TAX_RATE if tax_rate is None else tax_rate
        rounding_mode = rounding_mode or settings.ROUNDING_MODE
        totals = calculate_totals(line_items, discounts, tax_rate, rounding_mode, sink=self.sink)

        invoice = Invoice(
            invoice_id=invoice_id,
            invoice_number=invoice_id,
            client_id=client_id,
            client_name=client_name,
            vendor_id=vendor_id,
            line_items=list(line_items),
            discounts=list(discounts),
            tax_rate=tax_rate,
            rounding_mode=rounding_mode,
            totals=totals,
            balance_due=totals.grand_total,
            created_by=actor,
            updated_by=actor
        )
        await self.db.invoices.put(invoice)
        self._record_event(invoice, None, actor)
        logger.info(f"Draft invoice {invoice_id} created for {client_name}: {totals.grand_total:.2f}")
        return invoice

    async def issue_invoice(self, invoice_id: str, actor: str = "system", role: str = Role.FINANCE) -> Invoice:
        """
        Move a draft to issued and post its journal.
        A GL failure leaves the invoice in draft.
        """
        self.permissions.server_guard(role, "invoice:edit", actor)
        invoice = await self._get(invoice_id)

        if invoice.status != InvoiceStatus.DRAFT:
            raise InvalidStateError(f"Invoice {invoice_id} is {invoice.status.value}, only drafts can be issued")

        source = GlSource(
            module="billing",
            source_ref=GlSourceRef(invoice_id=invoice_id),
            entries=create_invoice_gl_entries(invoice_id, invoice.grand_total, invoice.client_id)
        )
        try:
            posted = post_gl(source, sink=self.sink)
        except Exception as e:
            logger.error(f"Issuing invoice {invoice_id} failed: {e}")
            emit(self.sink, "invoice_issue_failed", {
                "module": "billing", "actor": actor, "invoice_id": invoice_id, "error": str(e)
            })
            raise

        await self.db.journals.put(build_journal(source, posted, f"Invoice {invoice_id}", actor))

        previous = invoice.status
        now = utcnow()
        invoice.status = InvoiceStatus.ISSUED
        invoice.gl_journal_id = posted.journal_id
        invoice.balance_due = invoice.grand_total
        invoice.issued_at = now
        invoice.updated_at = now
        invoice.updated_by = actor
        await self.db.invoices.put(invoice)

        self._record_event(invoice, previous, actor)
        return invoice

    async def void_invoice(self, invoice_id: str, actor: str = "system", role: str = Role.FINANCE) -> Invoice:
        self.permissions.server_guard(role, "invoice:edit", actor)
        invoice = await self._get(invoice_id)

        if invoice.status == InvoiceStatus.PAID:
            raise InvalidStateError(f"Invoice {invoice_id} is paid and cannot be voided")
        if invoice.status == InvoiceStatus.VOID:
            return invoice

        previous = invoice.status
        now = utcnow()
        invoice.status = InvoiceStatus.VOID
        invoice.voided_at = now
        invoice.updated_at = now
        invoice.updated_by = actor
        await self.db.invoices.put(invoice)

        self._record_event(invoice, previous, actor)
        return invoice

    async def get_invoices(self, role: str, vendor_id: Optional[str] = None) -> List[Invoice]:
        invoices = await self.db.invoices.list()
        # Vendors only see their own invoices
        if role == Role.VENDOR and vendor_id:
            invoices = [inv for inv in invoices if inv.vendor_id == vendor_id]
        logger.info(f"Retrieved {len(invoices)} invoices for role {role}")
        return invoices

    async def get_invoice(self, invoice_id: str, role: str, vendor_id: Optional[str] = None) -> Optional[Invoice]:
        invoice = await self.db.invoices.get(invoice_id)
        if not invoice:
            logger.warning(f"Invoice not found: {invoice_id}")
            return None
        if role == Role.VENDOR and vendor_id and invoice.vendor_id != vendor_id:
            logger.warning(f"Vendor {vendor_id} denied invoice {invoice_id}")
            return None
        return invoice

    def lifecycle_events(self, invoice_id: Optional[str] = None) -> List[InvoiceLifecycleEvent]:
        with self._lock:
            events = list(self._events)
        if invoice_id:
            return [e for e in events if e.invoice_id == invoice_id]
        return events

    def record_status_change(self, invoice: Invoice, previous: Optional[InvoiceStatus], actor: str):
        """Lifecycle hook for status changes made by other services (payments)."""
        self._record_event(invoice, previous, actor)

    async def _get(self, invoice_id: str) -> Invoice:
        invoice = await self.db.invoices.get(invoice_id)
        if not invoice:
            raise NotFoundError(f"Invoice not found: {invoice_id}")
        return invoice

    def _record_event(self, invoice: Invoice, previous: Optional[InvoiceStatus], actor: str):
        event = InvoiceLifecycleEvent(
            event_id=f"event-{uuid.uuid4().hex[:12]}",
            invoice_id=invoice.invoice_id,
            event=LIFECYCLE_EVENTS[invoice.status],
            actor=actor,
            previous_status=previous,
            new_status=invoice.status,
            metadata={"invoice_number": invoice.invoice_number, "grand_total": invoice.grand_total}
        )
        with self._lock:
            self._events.append(event)

        emit(self.sink, event.event, {
            "module": "billing",
            "actor": actor,
            "invoice_id": invoice.invoice_id,
            "previous_status": previous.value if previous else None,
            "new_status": invoice.status.value,
        })
        logger.info(f"Invoice {invoice.invoice_id} status: {previous.value if previous else '-'} -> {invoice.status.value}")
