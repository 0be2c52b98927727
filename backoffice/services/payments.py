import logging
import re
import uuid
from datetime import date
from decimal import Decimal
from typing import List, Optional

from backoffice.database import Database
from backoffice.errors import FinanceValidationError, InvalidStateError, NotFoundError
from backoffice.guardrails.audit_logger import EventSink, emit
from backoffice.guardrails.permissions import PermissionChecker, Role
from backoffice.models.accounting import GlPostResult, GlSource, GlSourceRef
from backoffice.models.audit import utcnow
from backoffice.models.invoice import InvoiceStatus
from backoffice.models.payment import (
    PAYMENT_METHODS,
    InvoicePaymentStatus,
    MethodTotals,
    PaymentRecord,
    PaymentResult,
    PaymentSummary,
)
from backoffice.services.billing import BillingService
from backoffice.tools.gl_posting import build_journal, create_payment_gl_entries, post_gl
from backoffice.tools.money import is_finite, is_valid_currency, round_currency, sum_currency, to_decimal

logger = logging.getLogger(__name__)

ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

class PaymentService:
    def __init__(self,
                 db: Database,
                 billing: Optional[BillingService] = None,
                 permissions: Optional[PermissionChecker] = None,
                 sink: Optional[EventSink] = None):
        self.db = db
        self.billing = billing
        self.permissions = permissions or PermissionChecker(sink)
        self.sink = sink

    async def record_payment(self,
                             invoice_id: str,
                             amount: float,
                             method: str,
                             payment_date: str,
                             reference: Optional[str] = None,
                             notes: Optional[str] = None,
                             enable_gl_posting: bool = False,
                             actor: str = "system",
                             role: str = Role.FINANCE) -> PaymentResult:
        """
        Record a payment against an issued invoice, optionally posting the
        cash/receivable journal. The invoice becomes paid once the balance
        reaches zero.
        """
        self.permissions.server_guard(role, "payment:record", actor)
        validate_payment_inputs(invoice_id, amount, method, payment_date)

        invoice = await self.db.invoices.get(invoice_id)
        if not invoice:
            raise NotFoundError(f"Invoice {invoice_id} not found")
        if invoice.status == InvoiceStatus.DRAFT:
            raise InvalidStateError(f"Cannot record payment against draft invoice {invoice_id}")
        if invoice.status == InvoiceStatus.VOID:
            raise InvalidStateError(f"Cannot record payment against voided invoice {invoice_id}")

        grand_total = to_decimal(invoice.grand_total)
        paid_total = sum_currency(p.amount for p in invoice.payments) + to_decimal(amount)
        if paid_total > grand_total:
            raise InvalidStateError(
                f"Payment amount ${amount:.2f} would exceed invoice total ${invoice.grand_total:.2f}"
            )
        balance_due = round_currency(max(Decimal("0"), grand_total - paid_total))

        payment = PaymentRecord(
            payment_id=f"PAY-{uuid.uuid4().hex[:12]}",
            invoice_id=invoice_id,
            amount=round_currency(amount),
            method=method,
            payment_date=payment_date,
            reference=reference,
            notes=notes,
            created_by=actor
        )

        gl_posted: Optional[GlPostResult] = None
        if enable_gl_posting:
            source = GlSource(
                module="payments",
                source_ref=GlSourceRef(invoice_id=invoice_id, payment_id=payment.payment_id),
                entries=create_payment_gl_entries(invoice_id, payment.amount, method)
            )
            try:
                gl_posted = post_gl(source, sink=self.sink)
            except Exception as e:
                emit(self.sink, "payment_gl_failed", {
                    "module": "payments",
                    "actor": actor,
                    "payment_id": payment.payment_id,
                    "invoice_id": invoice_id,
                    "amount": amount,
                    "error": str(e),
                })
                raise
            await self.db.journals.put(build_journal(source, gl_posted, f"Payment {payment.payment_id}", actor))
            payment.gl_journal_id = gl_posted.journal_id

        previous_status = invoice.status
        new_status = InvoiceStatus.PAID if balance_due == 0 else InvoiceStatus.ISSUED

        now = utcnow()
        invoice.payments.append(payment)
        invoice.balance_due = balance_due
        invoice.status = new_status
        invoice.last_payment_date = payment_date
        invoice.updated_at = now
        invoice.updated_by = actor
        if new_status == InvoiceStatus.PAID:
            invoice.paid_at = now

        await self.db.payments.put(payment)
        await self.db.invoices.put(invoice)

        emit(self.sink, "payment_recorded", {
            "module": "payments",
            "actor": actor,
            "payment_id": payment.payment_id,
            "invoice_id": invoice_id,
            "amount": payment.amount,
            "method": method,
            "balance_due": balance_due,
            "gl_posted": gl_posted is not None,
        })
        logger.info(f"Payment {payment.payment_id} of {payment.amount:.2f} recorded on {invoice_id}, balance {balance_due:.2f}")

        if previous_status != new_status and self.billing:
            self.billing.record_status_change(invoice, previous_status, actor)

        return PaymentResult(
            payment=payment,
            invoice=InvoicePaymentStatus(
                invoice_id=invoice_id,
                previous_status=previous_status.value,
                new_status=new_status.value,
                balance_due=balance_due
            ),
            gl_posted=gl_posted
        )

    async def get_payment_history(self, invoice_id: str) -> List[PaymentRecord]:
        invoice = await self.db.invoices.get(invoice_id)
        return invoice.payments if invoice else []

    async def get_payment_summary(self,
                                  client_id: Optional[str] = None,
                                  date_from: Optional[str] = None,
                                  date_to: Optional[str] = None) -> PaymentSummary:
        payments = await self.db.payments.list()

        if client_id:
            invoice_ids = {inv.invoice_id for inv in await self.db.invoices.list({"client_id": client_id})}
            payments = [p for p in payments if p.invoice_id in invoice_ids]

        # ISO dates compare correctly as strings
        if date_from:
            payments = [p for p in payments if p.payment_date >= date_from]
        if date_to:
            payments = [p for p in payments if p.payment_date <= date_to]

        by_method = {m: MethodTotals() for m in PAYMENT_METHODS}
        for p in payments:
            bucket = by_method[p.method]
            bucket.count += 1
            bucket.total = round_currency(to_decimal(bucket.total) + to_decimal(p.amount))

        total = sum_currency(p.amount for p in payments)
        count = len(payments)
        return PaymentSummary(
            total_payments=round_currency(total),
            payment_count=count,
            average_payment=round_currency(total / count) if count else 0.0,
            payments_by_method=by_method
        )


def validate_payment_inputs(invoice_id: str, amount: float, method: str, payment_date: str):
    if not invoice_id or not invoice_id.strip():
        raise FinanceValidationError("Invoice ID is required")
    if not is_finite(amount) or amount <= 0:
        raise FinanceValidationError("Payment amount must be greater than 0")
    if not is_valid_currency(amount):
        raise FinanceValidationError("Payment amount must have at most 2 decimal places")
    if method not in PAYMENT_METHODS:
        raise FinanceValidationError("Invalid payment method")
    if not payment_date or not ISO_DATE.match(payment_date):
        raise FinanceValidationError("Invalid payment date format (expected ISO date)")
    try:
        date.fromisoformat(payment_date)
    except ValueError:
        raise FinanceValidationError("Invalid payment date format (expected ISO date)")
