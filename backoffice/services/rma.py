import itertools
import logging
import threading
import uuid
from typing import Any, Dict, List, Optional

from backoffice.config import settings
from backoffice.database import Database
from backoffice.errors import InvalidStateError, NotFoundError
from backoffice.guardrails.audit_logger import EventSink, emit
from backoffice.guardrails.permissions import PermissionChecker, Role
from backoffice.models.accounting import GlEntry, GlJournal, GlSource, GlSourceRef
from backoffice.models.audit import utcnow
from backoffice.models.rma import (
    RMA,
    AccountingAdjustment,
    ARImpact,
    CreditMemo,
    CreditMemoLine,
    DispositionResult,
    DispositionSimulationResult,
    DispositionType,
    InventoryImpact,
    ReasonCode,
    RMAEvent,
    RMALine,
    RMAStatus,
)
from backoffice.tools.gl_posting import (
    COST_OF_GOODS_SOLD,
    DISPOSAL_EXPENSE,
    INVENTORY,
    REPAIR_PARTS_COST,
    REPAIR_REVENUE,
    RTV_REVENUE,
    ACCOUNTS_RECEIVABLE,
    build_journal,
    create_disposal_gl_entries,
    create_rma_credit_gl_entries,
    post_gl,
)
from backoffice.tools.money import round_currency, to_decimal

logger = logging.getLogger(__name__)

SERVICE_INVOICE_TYPES = {
    DispositionType.SCRAP: ("disposal", "disposal_fee", "Disposal Fee"),
    DispositionType.RTV: ("rtv", "rtv_charge", "Return to Vendor Handling"),
    DispositionType.REPAIR: ("repair", "repair_invoice", "Repair Services"),
}

class RMAService:
    """
    Returns management. Each disposition produces its customer document
    (credit memo or service invoice) and a balanced journal posted through
    post_gl.
    """

    def __init__(self, db: Database, permissions: Optional[PermissionChecker] = None, sink: Optional[EventSink] = None):
        self.db = db
        self.permissions = permissions or PermissionChecker(sink)
        self.sink = sink
        self._events: List[RMAEvent] = []
        self._lock = threading.Lock()
        self._rma_seq = itertools.count(1)
        self._credit_seq = itertools.count(1)
        self._service_invoice_seq = itertools.count(1)

    async def create_rma(self,
                         client_id: str,
                         client_name: str,
                         original_invoice_id: str,
                         actor: str,
                         role: str) -> str:
        try:
            self.permissions.server_guard(role, "rma:create", actor)

            rma_id = f"RMA-{utcnow().year}-{next(self._rma_seq):03d}"
            rma = RMA(
                rma_id=rma_id,
                client_id=client_id,
                client_name=client_name,
                original_invoice_id=original_invoice_id,
                created_by=actor,
                updated_by=actor
            )
            await self.db.rmas.put(rma)
        except Exception as e:
            self._tag("rma_creation_failed", actor, error=str(e))
            raise

        self._add_event(rma_id, "rma_created", actor, {"client": client_name, "original_invoice": original_invoice_id})
        self._tag("rma_created", actor, rma_id=rma_id, client_name=client_name, original_invoice_id=original_invoice_id)
        logger.info(f"RMA {rma_id} created for {client_name}")
        return rma_id

    async def add_line(self,
                       rma_id: str,
                       sku: str,
                       description: str,
                       qty: float,
                       reason_code: ReasonCode,
                       unit_price: float,
                       unit_cost: float,
                       actor: str,
                       role: str,
                       variant: Optional[str] = None) -> str:
        try:
            self.permissions.server_guard(role, "rma:create", actor)
            rma = await self._get(rma_id)

            line = RMALine(
                line_id=f"{rma_id}-line-{len(rma.lines) + 1}",
                sku=sku,
                variant=variant,
                description=description,
                qty=qty,
                reason_code=reason_code,
                unit_price=unit_price,
                unit_cost=unit_cost
            )
            rma.lines.append(line)
            rma.updated_at = utcnow()
            rma.updated_by = actor
            await self.db.rmas.put(rma)
        except Exception as e:
            self._tag("rma_line_add_failed", actor, rma_id=rma_id, sku=sku, error=str(e))
            raise

        self._add_event(rma_id, "line_added", actor, {"sku": sku, "qty": qty}, line_id=line.line_id)
        self._tag("rma_line_added", actor, rma_id=rma_id, line_id=line.line_id, sku=sku, qty=qty,
                  reason_code=line.reason_code.value)
        return line.line_id

    async def process_disposition(self,
                                  rma_id: str,
                                  line_id: str,
                                  disposition: DispositionType,
                                  notes: str,
                                  actor: str,
                                  role: str) -> DispositionResult:
        """
        Apply a disposition to one RMA line and post its accounting.

        RESTOCK credits the customer and returns the goods to inventory.
        SCRAP writes the goods off and bills a disposal fee. RTV bills the
        vendor handling charge. REPAIR bills labor and consumes parts.
        """
        disposition = DispositionType(disposition)
        try:
            self.permissions.server_guard(role, "rma:disposition", actor)
            rma = await self._get(rma_id)

            line = next((l for l in rma.lines if l.line_id == line_id), None)
            if not line:
                raise NotFoundError(f"RMA line not found: {line_id}")
            if line.status == "posted":
                raise InvalidStateError(f"RMA line {line_id} already has disposition {line.disposition.value}")

            result = await self._execute_disposition(rma, line, disposition, actor)

            now = utcnow()
            line.disposition = disposition
            line.disposition_notes = notes
            line.accounting_adjustments = result.adjustments
            line.status = "posted"
            line.processed_at = now
            line.processed_by = actor

            rma.status = RMAStatus.CLOSED if all(l.status == "posted" for l in rma.lines) else RMAStatus.IN_PROGRESS
            rma.updated_at = now
            rma.updated_by = actor
            await self.db.rmas.put(rma)
        except Exception as e:
            logger.error(f"Disposition {disposition.value} failed for {rma_id}/{line_id}: {e}")
            self._tag("disposition_processing_failed", actor, rma_id=rma_id, line_id=line_id,
                      disposition=disposition.value, error=str(e))
            raise

        artifacts = result.model_dump(exclude={"adjustments"}, exclude_none=True)
        self._add_event(rma_id, "disposition_assigned", actor,
                        {"disposition": disposition.value, "artifacts": artifacts}, line_id=line_id)
        self._tag("disposition_processed", actor, rma_id=rma_id, line_id=line_id,
                  disposition=disposition.value, artifact_ids=artifacts)
        return result

    async def _execute_disposition(self, rma: RMA, line: RMALine, disposition: DispositionType, actor: str) -> DispositionResult:
        value, cost = line_value(line), line_cost(line)
        memo = f"{disposition.value}: {line.sku} x{line.qty:g}"

        if disposition == DispositionType.RESTOCK:
            credit_memo_id = await self._create_credit_memo(rma, line, actor)
            entries = create_rma_credit_gl_entries(rma.rma_id, value, rma.client_id) + [
                GlEntry(acct=INVENTORY, debit=cost, credit=0, memo=memo),
                GlEntry(acct=COST_OF_GOODS_SOLD, debit=0, credit=cost, memo=memo),
            ]
            journal_id = await self._post_journal(rma, line, entries, memo, actor)
            return DispositionResult(
                credit_memo_id=credit_memo_id,
                gl_journal_id=journal_id,
                adjustments=[AccountingAdjustment(
                    type="credit_memo",
                    document_id=credit_memo_id,
                    gl_journal_id=journal_id,
                    amount=value,
                    posted_at=utcnow()
                )]
            )

        charge, parts = disposition_charges(disposition, value, cost)
        if disposition == DispositionType.SCRAP:
            entries = [
                GlEntry(acct=DISPOSAL_EXPENSE, debit=cost, credit=0, memo=memo),
                GlEntry(acct=INVENTORY, debit=0, credit=cost, memo=memo),
            ] + create_disposal_gl_entries(rma.rma_id, charge, rma.client_id)
        elif disposition == DispositionType.RTV:
            entries = [
                GlEntry(acct=ACCOUNTS_RECEIVABLE, debit=charge, credit=0, memo=memo),
                GlEntry(acct=RTV_REVENUE, debit=0, credit=charge, memo=memo),
            ]
        elif disposition == DispositionType.REPAIR:
            entries = [
                GlEntry(acct=ACCOUNTS_RECEIVABLE, debit=charge, credit=0, memo=memo),
                GlEntry(acct=REPAIR_REVENUE, debit=0, credit=charge, memo=memo),
                GlEntry(acct=REPAIR_PARTS_COST, debit=parts, credit=0, memo=memo),
                GlEntry(acct=INVENTORY, debit=0, credit=parts, memo=memo),
            ]
        else:
            raise ValueError(f"Unsupported disposition: {disposition}")

        invoice_type, adjustment_type, description = SERVICE_INVOICE_TYPES[disposition]
        invoice_id = self._create_service_invoice(rma, line, charge, invoice_type, description, actor)
        journal_id = await self._post_journal(rma, line, entries, memo, actor)
        return DispositionResult(
            invoice_id=invoice_id,
            gl_journal_id=journal_id,
            adjustments=[AccountingAdjustment(
                type=adjustment_type,
                document_id=invoice_id,
                gl_journal_id=journal_id,
                amount=charge,
                posted_at=utcnow()
            )]
        )

    async def _post_journal(self, rma: RMA, line: RMALine, entries: List[GlEntry], description: str, actor: str) -> Optional[str]:
        # Zero legs (free or zero-cost goods) are dropped rather than posted
        entries = [e for e in entries if e.debit or e.credit]
        if not entries:
            logger.info(f"No accounting for {rma.rma_id}/{line.line_id}: zero value and cost")
            return None

        source = GlSource(
            module="rma",
            source_ref=GlSourceRef(rma_id=rma.rma_id, rma_line_id=line.line_id, invoice_id=rma.original_invoice_id),
            entries=entries
        )
        posted = post_gl(source, sink=self.sink)
        await self.db.journals.put(build_journal(source, posted, description, actor))
        self._add_event(rma.rma_id, "gl_posted", actor,
                        {"journal_id": posted.journal_id, "description": description}, line_id=line.line_id)
        return posted.journal_id

    async def _create_credit_memo(self, rma: RMA, line: RMALine, actor: str) -> str:
        credit_memo_id = f"CM-{utcnow().year}-{next(self._credit_seq):03d}"
        amount = line_value(line)
        taxes = round_currency(to_decimal(amount) * to_decimal(settings.RMA_CREDIT_MEMO_TAX_RATE))

        memo = CreditMemo(
            credit_memo_id=credit_memo_id,
            client_id=rma.client_id,
            client_name=rma.client_name,
            original_invoice_id=rma.original_invoice_id,
            rma_id=rma.rma_id,
            lines=[CreditMemoLine(
                line_id=f"{credit_memo_id}-line-1",
                description=f"Return Credit: {line.description}",
                quantity=line.qty,
                unit_price=line.unit_price,
                amount=amount
            )],
            subtotal=amount,
            taxes=taxes,
            total=round_currency(to_decimal(amount) + to_decimal(taxes)),
            created_by=actor
        )
        await self.db.credit_memos.put(memo)
        self._add_event(rma.rma_id, "credit_memo_issued", actor,
                        {"credit_memo_id": credit_memo_id, "amount": amount}, line_id=line.line_id)
        return credit_memo_id

    def _create_service_invoice(self, rma: RMA, line: RMALine, amount: float, invoice_type: str, description: str, actor: str) -> str:
        # Billing picks these up from the event stream
        invoice_id = f"INV-{invoice_type.upper()}-{next(self._service_invoice_seq):03d}"
        self._tag(f"{invoice_type}_invoice_created", actor, invoice_id=invoice_id, rma_id=rma.rma_id,
                  line_id=line.line_id, amount=amount, description=description)
        return invoice_id

    def simulate_disposition(self, line: RMALine, disposition: DispositionType, actor: str) -> DispositionSimulationResult:
        """Preview a disposition's inventory and receivable impact without posting anything."""
        disposition = DispositionType(disposition)
        value, cost = line_value(line), line_cost(line)
        charge, parts = disposition_charges(disposition, value, cost)
        result = DispositionSimulationResult(disposition=disposition, line=line)

        if disposition == DispositionType.RESTOCK:
            result.inventory_impact = InventoryImpact(quantity_change=line.qty, value_change=cost)
            result.ar_impact = ARImpact(amount=-value, account="Credit to customer")
            result.messages.append(f"Will credit customer ${value:.2f}")
            result.messages.append(f"Will increase inventory by {line.qty:g} units worth ${cost:.2f}")
        elif disposition == DispositionType.SCRAP:
            result.inventory_impact = InventoryImpact(quantity_change=-line.qty, value_change=-cost)
            result.ar_impact = ARImpact(amount=charge, account="Disposal fee invoice")
            result.messages.append(f"Will write off inventory worth ${cost:.2f}")
            result.messages.append(f"Will charge disposal fee of ${charge:.2f}")
        elif disposition == DispositionType.RTV:
            result.ar_impact = ARImpact(amount=charge, account="RTV handling fee")
            result.messages.append(f"Will charge RTV handling fee of ${charge:.2f}")
            result.messages.append("No inventory impact - item returned to vendor")
        elif disposition == DispositionType.REPAIR:
            result.inventory_impact = InventoryImpact(quantity_change=0, value_change=-parts)
            result.ar_impact = ARImpact(amount=charge, account="Repair labor invoice")
            result.messages.append(f"Will charge repair fee of ${charge:.2f}")
            result.messages.append(f"Estimated parts cost: ${parts:.2f}")

        self._tag("disposition_simulated", actor, disposition=disposition.value, sku=line.sku,
                  ar_amount=result.ar_impact.amount)
        return result

    async def get_rmas(self, role: str, vendor_id: Optional[str] = None) -> List[RMA]:
        rmas = await self.db.rmas.list()
        if role == Role.VENDOR and vendor_id:
            visible = await self._vendor_invoice_ids(vendor_id)
            rmas = [r for r in rmas if r.original_invoice_id in visible]
        return rmas

    async def get_rma(self, rma_id: str, role: str, vendor_id: Optional[str] = None) -> Optional[RMA]:
        rma = await self.db.rmas.get(rma_id)
        if not rma:
            return None
        if role == Role.VENDOR and vendor_id:
            if rma.original_invoice_id not in await self._vendor_invoice_ids(vendor_id):
                logger.warning(f"Vendor {vendor_id} denied RMA {rma_id}")
                return None
        return rma

    def events(self, rma_id: Optional[str] = None) -> List[RMAEvent]:
        with self._lock:
            events = list(self._events)
        if rma_id:
            return [e for e in events if e.rma_id == rma_id]
        return events

    async def credit_memos(self) -> List[CreditMemo]:
        return await self.db.credit_memos.list()

    async def journals(self) -> List[GlJournal]:
        return await self.db.journals.list({"module": "rma"})

    async def _vendor_invoice_ids(self, vendor_id: str) -> set:
        return {inv.invoice_id for inv in await self.db.invoices.list({"vendor_id": vendor_id})}

    async def _get(self, rma_id: str) -> RMA:
        rma = await self.db.rmas.get(rma_id)
        if not rma:
            raise NotFoundError(f"RMA not found: {rma_id}")
        return rma

    def _add_event(self, rma_id: str, action: str, actor: str, details: Dict[str, Any], line_id: Optional[str] = None):
        event = RMAEvent(
            event_id=f"event-{uuid.uuid4().hex[:12]}",
            rma_id=rma_id,
            action=action,
            actor=actor,
            line_id=line_id,
            details=details
        )
        with self._lock:
            self._events.append(event)
        logger.debug(f"RMA event {action} on {rma_id} by {actor}")

    def _tag(self, action: str, actor: str, **details):
        emit(self.sink, action, {"module": "rma", "actor": actor, **details})


def line_value(line: RMALine) -> float:
    return round_currency(to_decimal(line.qty) * to_decimal(line.unit_price))


def line_cost(line: RMALine) -> float:
    return round_currency(to_decimal(line.qty) * to_decimal(line.unit_cost))


def disposition_charges(disposition: DispositionType, value: float, cost: float):
    """(customer charge, parts consumed) for a disposition, rounded to the cent."""
    if disposition == DispositionType.SCRAP:
        return round_currency(to_decimal(cost) * to_decimal(settings.RMA_DISPOSAL_FEE_RATE)), 0.0
    if disposition == DispositionType.RTV:
        return round_currency(to_decimal(cost) * to_decimal(settings.RMA_RTV_HANDLING_RATE)), 0.0
    if disposition == DispositionType.REPAIR:
        return (
            round_currency(to_decimal(value) * to_decimal(settings.RMA_REPAIR_LABOR_RATE)),
            round_currency(to_decimal(cost) * to_decimal(settings.RMA_REPAIR_PARTS_RATE)),
        )
    return 0.0, 0.0
