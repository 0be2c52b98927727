import pytest

from backoffice.errors import FinanceValidationError, InvalidStateError, NotFoundError
from backoffice.models.invoice import InvoiceStatus


async def issued_invoice(billing, line_items, discounts, invoice_id="INV-2024-001"):
    # Grand total 97.20
    await billing.create_draft(invoice_id, "client-001", "Acme Corporation", line_items, discounts, tax_rate=0.08)
    return await billing.issue_invoice(invoice_id)


@pytest.mark.asyncio
async def test_partial_then_full_payment(db, billing, payments, sample_line_items, ten_percent_off):
    await issued_invoice(billing, sample_line_items, [ten_percent_off])

    first = await payments.record_payment(
        "INV-2024-001", 50, "ach", "2024-02-01", reference="TXN-1", enable_gl_posting=True, actor="fin-1"
    )

    assert first.invoice.previous_status == "issued"
    assert first.invoice.new_status == "issued"
    assert first.invoice.balance_due == 47.2
    assert first.gl_posted.debits == 50.0
    assert first.payment.gl_journal_id == first.gl_posted.journal_id

    journal = await db.journals.get(first.gl_posted.journal_id)
    assert [(e.acct, e.debit, e.credit) for e in journal.entries] == [("1100", 50.0, 0), ("1200", 0, 50.0)]
    assert journal.source_ref.payment_id == first.payment.payment_id

    second = await payments.record_payment("INV-2024-001", 47.2, "check", "2024-02-15")

    assert second.gl_posted is None
    assert second.invoice.new_status == "paid"
    assert second.invoice.balance_due == 0.0

    invoice = await db.invoices.get("INV-2024-001")
    assert invoice.status == InvoiceStatus.PAID
    assert invoice.paid_at is not None
    assert invoice.last_payment_date == "2024-02-15"
    assert len(await payments.get_payment_history("INV-2024-001")) == 2
    assert billing.lifecycle_events("INV-2024-001")[-1].event == "invoice_paid"


@pytest.mark.asyncio
async def test_overpayment_rejected(billing, payments, sample_line_items, ten_percent_off):
    await issued_invoice(billing, sample_line_items, [ten_percent_off])

    with pytest.raises(InvalidStateError, match="exceed invoice total"):
        await payments.record_payment("INV-2024-001", 97.21, "wire", "2024-02-01")


@pytest.mark.asyncio
async def test_draft_and_void_invoices_cannot_be_paid(billing, payments, sample_line_items):
    await billing.create_draft("INV-D", "c1", "Client", sample_line_items)
    with pytest.raises(InvalidStateError, match="draft"):
        await payments.record_payment("INV-D", 10, "cash", "2024-02-01")

    await billing.issue_invoice("INV-D")
    await billing.void_invoice("INV-D")
    with pytest.raises(InvalidStateError, match="voided"):
        await payments.record_payment("INV-D", 10, "cash", "2024-02-01")

    with pytest.raises(NotFoundError):
        await payments.record_payment("INV-404", 10, "cash", "2024-02-01")


@pytest.mark.asyncio
async def test_paid_invoice_cannot_be_voided(billing, payments, sample_line_items):
    await billing.create_draft("INV-1", "c1", "Client", sample_line_items)
    await billing.issue_invoice("INV-1")
    await payments.record_payment("INV-1", 100, "card", "2024-03-01")

    with pytest.raises(InvalidStateError, match="paid"):
        await billing.void_invoice("INV-1")


@pytest.mark.asyncio
async def test_sub_cent_payment_rejected_and_invoice_still_payable(db, billing, payments, sample_line_items):
    await billing.create_draft("INV-1", "c1", "Client", sample_line_items)
    await billing.issue_invoice("INV-1")

    with pytest.raises(FinanceValidationError, match="at most 2 decimal places"):
        await payments.record_payment("INV-1", 99.995, "ach", "2024-03-01")

    invoice = await db.invoices.get("INV-1")
    assert invoice.balance_due == 100.0
    assert invoice.payments == []

    await payments.record_payment("INV-1", 99.99, "ach", "2024-03-01")
    last = await payments.record_payment("INV-1", 0.01, "ach", "2024-03-02")

    assert last.invoice.new_status == "paid"
    assert last.invoice.balance_due == 0.0


@pytest.mark.parametrize("invoice_id,amount,method,payment_date,message", [
    ("", 10, "ach", "2024-01-01", "Invoice ID is required"),
    ("INV-1", 0, "ach", "2024-01-01", "Payment amount must be greater than 0"),
    ("INV-1", float("nan"), "ach", "2024-01-01", "Payment amount must be greater than 0"),
    ("INV-1", 10, "bitcoin", "2024-01-01", "Invalid payment method"),
    ("INV-1", 10, "ach", "01/02/2024", "Invalid payment date format"),
    ("INV-1", 10, "ach", "2024-13-01", "Invalid payment date format"),
])
@pytest.mark.asyncio
async def test_payment_input_validation(payments, invoice_id, amount, method, payment_date, message):
    with pytest.raises(FinanceValidationError, match=message):
        await payments.record_payment(invoice_id, amount, method, payment_date)


@pytest.mark.asyncio
async def test_payment_summary(billing, payments, sample_line_items, ten_percent_off):
    await issued_invoice(billing, sample_line_items, [ten_percent_off], "INV-A")
    await issued_invoice(billing, sample_line_items, [ten_percent_off], "INV-B")
    await payments.record_payment("INV-A", 50, "ach", "2024-02-01")
    await payments.record_payment("INV-A", 47.2, "ach", "2024-02-10")
    await payments.record_payment("INV-B", 20, "cash", "2024-03-05")

    summary = await payments.get_payment_summary()
    assert summary.total_payments == 117.2
    assert summary.payment_count == 3
    assert summary.average_payment == 39.07
    assert summary.payments_by_method["ach"].count == 2
    assert summary.payments_by_method["ach"].total == 97.2
    assert summary.payments_by_method["wire"].count == 0

    february = await payments.get_payment_summary(date_from="2024-02-01", date_to="2024-02-28")
    assert february.payment_count == 2
    assert february.total_payments == 97.2

    empty = await payments.get_payment_summary(date_from="2025-01-01")
    assert empty.payment_count == 0
    assert empty.average_payment == 0.0


@pytest.mark.asyncio
async def test_payment_events(billing, payments, sample_line_items, ten_percent_off, event_log):
    await issued_invoice(billing, sample_line_items, [ten_percent_off])
    await payments.record_payment("INV-2024-001", 10, "wire", "2024-02-01", actor="fin-1")

    recorded = event_log.for_action("payment_recorded")[0]
    assert recorded.module == "payments"
    assert recorded.actor.id == "fin-1"
    assert recorded.details["balance_due"] == 87.2
