"""
General ledger posting.

`post_gl` validates a double-entry batch and computes the canonical record
(journal id, totals, timestamp). Persisting the journal is up to the caller;
see `build_journal`.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from backoffice.config import settings
from backoffice.errors import GlValidationError, UnbalancedEntryError
from backoffice.guardrails.audit_logger import EventSink, emit
from backoffice.models.accounting import GlEntry, GlJournal, GlPostResult, GlSource
from backoffice.tools.money import is_finite, is_valid_currency, round_currency, sum_currency, to_decimal

logger = logging.getLogger(__name__)

# Chart of accounts
CASH = "1000"
BANK = "1100"
ACCOUNTS_RECEIVABLE = "1200"
INVENTORY = "1300"
REVENUE = "4000"
DISPOSAL_REVENUE = "4200"
RTV_REVENUE = "4600"
REPAIR_REVENUE = "4700"
COST_OF_GOODS_SOLD = "5000"
REPAIR_PARTS_COST = "5100"
DISPOSAL_EXPENSE = "6500"


def new_journal_id(at: datetime) -> str:
    # uuid4 suffix keeps ids unique across concurrent calls in one process
    return f"GL-{at:%Y%m%d%H%M%S}-{uuid.uuid4().hex[:12]}"


def post_gl(source: GlSource, sink: Optional[EventSink] = None) -> GlPostResult:
    """
    Validate and post a balanced batch of GL entries.

    Raises GlValidationError for structurally bad entries and
    UnbalancedEntryError when debits and credits differ by more than the
    tolerance. Nothing is corrected automatically.
    """
    validate_gl_entries(source.entries)

    at = datetime.now(timezone.utc)
    journal_id = new_journal_id(at)
    source_ref = source.source_ref.model_dump(exclude_none=True)

    debits = sum_currency(e.debit for e in source.entries)
    credits = sum_currency(e.credit for e in source.entries)
    difference = debits - credits

    if abs(difference) > to_decimal(settings.GL_BALANCE_TOLERANCE):
        error = UnbalancedEntryError(
            debits=float(debits),
            credits=float(credits),
            difference=float(difference),
            source_ref=source_ref,
        )
        logger.error(f"{error} ({source.module} {source_ref})")
        emit(sink, "gl_post_failed", {
            "module": source.module,
            "journal_id": journal_id,
            "error": "unbalanced_entry",
            "debits": float(debits),
            "credits": float(credits),
            "difference": float(difference),
            "source_ref": source_ref,
        })
        raise error

    result = GlPostResult(
        journal_id=journal_id,
        debits=round_currency(debits),
        credits=round_currency(credits),
        at=at,
    )

    logger.info(f"GL journal {journal_id} posted: {len(source.entries)} entries, {result.debits:.2f}")
    emit(sink, "gl_posted", {
        "module": source.module,
        "journal_id": journal_id,
        "debits": result.debits,
        "credits": result.credits,
        "entry_count": len(source.entries),
        "source_ref": source_ref,
    })
    return result


def validate_gl_entries(entries: List[GlEntry]):
    if not entries:
        raise GlValidationError("GL entries cannot be empty")

    for entry in entries:
        if not entry.acct or not entry.acct.strip():
            raise GlValidationError("GL entry missing account code")
        if not is_finite(entry.debit) or not is_finite(entry.credit):
            raise GlValidationError(f"GL entry {entry.acct} amounts must be finite numbers")
        if entry.debit < 0 or entry.credit < 0:
            raise GlValidationError(f"GL entry {entry.acct} amounts must be >= 0")
        if entry.debit > 0 and entry.credit > 0:
            raise GlValidationError(f"GL entry {entry.acct} cannot have both debit and credit amounts")
        if entry.debit == 0 and entry.credit == 0:
            raise GlValidationError(f"GL entry {entry.acct} must have either debit or credit amount")
        if not is_valid_currency(entry.debit) or not is_valid_currency(entry.credit):
            raise GlValidationError(f"GL entry {entry.acct} amounts must have maximum 2 decimal places")


def build_journal(
    source: GlSource,
    result: GlPostResult,
    description: Optional[str] = None,
    posted_by: str = "system",
) -> GlJournal:
    """Canonical journal record for a successful post, ready to persist."""
    return GlJournal(
        journal_id=result.journal_id,
        version=source.version,
        module=source.module,
        source_ref=source.source_ref,
        description=description,
        entries=[
            entry.model_copy(update={
                "debit": round_currency(entry.debit),
                "credit": round_currency(entry.credit),
            })
            for entry in source.entries
        ],
        total_debits=result.debits,
        total_credits=result.credits,
        posted_at=result.at,
        posted_by=posted_by,
    )


def create_invoice_gl_entries(invoice_id: str, total: float, client_id: str) -> List[GlEntry]:
    memo = f"Invoice {invoice_id} - {client_id}"
    return [
        GlEntry(acct=ACCOUNTS_RECEIVABLE, debit=total, credit=0, memo=memo),
        GlEntry(acct=REVENUE, debit=0, credit=total, memo=memo),
    ]


def create_payment_gl_entries(invoice_id: str, amount: float, method: str) -> List[GlEntry]:
    cash_account = CASH if method == "cash" else BANK
    memo = f"Payment {invoice_id} - {method}"
    return [
        GlEntry(acct=cash_account, debit=amount, credit=0, memo=memo),
        GlEntry(acct=ACCOUNTS_RECEIVABLE, debit=0, credit=amount, memo=memo),
    ]


def create_rma_credit_gl_entries(rma_id: str, amount: float, client_id: str) -> List[GlEntry]:
    # Contra-revenue against the customer's receivable
    memo = f"RMA Credit {rma_id} - {client_id}"
    return [
        GlEntry(acct=REVENUE, debit=amount, credit=0, memo=memo),
        GlEntry(acct=ACCOUNTS_RECEIVABLE, debit=0, credit=amount, memo=memo),
    ]


def create_disposal_gl_entries(rma_id: str, amount: float, client_id: str) -> List[GlEntry]:
    memo = f"Disposal Fee {rma_id} - {client_id}"
    return [
        GlEntry(acct=ACCOUNTS_RECEIVABLE, debit=amount, credit=0, memo=memo),
        GlEntry(acct=DISPOSAL_REVENUE, debit=0, credit=amount, memo=memo),
    ]
