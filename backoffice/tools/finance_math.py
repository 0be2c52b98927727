import logging
from decimal import Decimal
from typing import Dict, List, Optional, Sequence

from backoffice.errors import FinanceValidationError
from backoffice.guardrails.audit_logger import EventSink, emit
from backoffice.models.finance import (
    AppliedDiscount,
    CalculationResult,
    Discount,
    LineItem,
    ProcessedLineItem,
    RoundingMode,
)
from backoffice.tools.money import ROUNDING_MODES, is_finite, round_currency, to_decimal

logger = logging.getLogger(__name__)

CATEGORY_SCOPE_PREFIX = "category:"


def calculate_totals(
    line_items: Sequence[LineItem],
    discounts: Sequence[Discount],
    tax_rate: float = 0.0,
    rounding_mode: RoundingMode = "HALF_UP",
    sink: Optional[EventSink] = None,
) -> CalculationResult:
    """
    Compute invoice/quote totals.

    Flat discounts are applied before percent discounts, so a percent discount
    works on the already reduced net of each line. Every per-line and
    per-discount amount is rounded to the cent as it is produced. The rounding
    mode only governs the tax step; all other steps round half-up.
    """
    validate_line_items(line_items)
    validate_discounts(discounts)
    validate_tax_rate(tax_rate)
    if rounding_mode not in ROUNDING_MODES:
        raise FinanceValidationError(f"Unsupported rounding mode: {rounding_mode}")

    lines: List[ProcessedLineItem] = [
        ProcessedLineItem(
            **line.model_dump(include=set(LineItem.model_fields)),
            line_subtotal=round_currency(to_decimal(line.qty) * to_decimal(line.unit_price)),
        )
        for line in line_items
    ]

    subtotal = sum((to_decimal(line.line_subtotal) for line in lines), Decimal("0"))

    # Stable: flat first, ties keep caller order
    ordered = sorted(discounts, key=lambda d: 0 if d.type == "flat" else 1)

    applied: List[AppliedDiscount] = []
    total_discount = Decimal("0")
    for discount in ordered:
        result = apply_discount(lines, discount)
        total_discount += to_decimal(result.amount)
        applied.append(result)

    for line in lines:
        line.after_discounts = round_currency(
            to_decimal(line.line_subtotal) - to_decimal(line.discount_amount)
        )
        line.taxable_amount = line.after_discounts

    after_discounts = round_currency(subtotal - total_discount)
    tax_amount = round_currency(to_decimal(after_discounts) * to_decimal(tax_rate), rounding_mode)
    grand_total = round_currency(to_decimal(after_discounts) + to_decimal(tax_amount))

    result = CalculationResult(
        line_items=lines,
        subtotal=round_currency(subtotal),
        discount_amount=round_currency(total_discount),
        after_discounts=after_discounts,
        tax_amount=tax_amount,
        grand_total=grand_total,
        applied_discounts=applied,
    )

    emit(sink, "totals_calculated", {
        "line_count": len(lines),
        "subtotal": result.subtotal,
        "discount_amount": result.discount_amount,
        "after_discounts": result.after_discounts,
        "tax_rate": tax_rate,
        "tax_amount": result.tax_amount,
        "grand_total": result.grand_total,
        "discount_count": len(discounts),
    })
    return result


def apply_discount(lines: List[ProcessedLineItem], discount: Discount) -> AppliedDiscount:
    """Apply one discount to the eligible lines, updating them in place."""
    eligible = [line for line in lines if is_line_eligible(line, discount)]

    total = Decimal("0")
    applied_to: List[str] = []

    if discount.type == "flat":
        nets: Dict[str, Decimal] = {line.id: _net(line) for line in eligible}
        eligible_net = sum(nets.values(), Decimal("0"))
        if eligible_net > 0:
            value = to_decimal(discount.value)
            for line in eligible:
                share = round_currency(value * nets[line.id] / eligible_net)
                total += _add_discount(line, share)
                applied_to.append(line.id)
    elif discount.type == "percent":
        ratio = to_decimal(discount.value) / Decimal("100")
        for line in eligible:
            share = round_currency(_net(line) * ratio)
            total += _add_discount(line, share)
            applied_to.append(line.id)

    return AppliedDiscount(
        discount_id=discount.id,
        description=discount.description,
        amount=round_currency(total),
        applied_to_lines=applied_to,
    )


def is_line_eligible(line: LineItem, discount: Discount) -> bool:
    # Non-discountable lines (duties) never qualify, whatever the scope
    if not line.discountable:
        return False
    scope = discount.scope
    if scope == "all":
        return True
    if scope == "non_surcharges":
        return not line.is_surcharge
    if scope.startswith(CATEGORY_SCOPE_PREFIX):
        return line.category == scope[len(CATEGORY_SCOPE_PREFIX):]
    return False


def _net(line: ProcessedLineItem) -> Decimal:
    return to_decimal(line.line_subtotal) - to_decimal(line.discount_amount)


def _add_discount(line: ProcessedLineItem, amount: float) -> Decimal:
    line.discount_amount = round_currency(to_decimal(line.discount_amount) + to_decimal(amount))
    return to_decimal(amount)


def validate_line_items(line_items: Sequence[LineItem]):
    if not line_items:
        raise FinanceValidationError("Line items cannot be empty")

    for line in line_items:
        if not line.id or not line.id.strip():
            raise FinanceValidationError("Line item missing ID")
        if not line.sku or not line.sku.strip():
            raise FinanceValidationError(f"Line item {line.id} missing SKU")
        if not is_finite(line.qty) or not is_finite(line.unit_price):
            raise FinanceValidationError(f"Line item {line.id} has invalid numeric values")
        if line.qty <= 0:
            raise FinanceValidationError(f"Line item {line.id} quantity must be > 0")
        if line.unit_price < 0:
            raise FinanceValidationError(f"Line item {line.id} unit price cannot be negative")


def validate_discounts(discounts: Sequence[Discount]):
    for discount in discounts:
        if not discount.id or not discount.id.strip():
            raise FinanceValidationError("Discount missing ID")
        if not is_finite(discount.value):
            raise FinanceValidationError(f"Discount {discount.id} has invalid value")
        if discount.type == "percent" and not 0 <= discount.value <= 100:
            raise FinanceValidationError(f"Discount {discount.id} percentage must be 0-100")
        if discount.type == "flat" and discount.value < 0:
            raise FinanceValidationError(f"Discount {discount.id} flat amount cannot be negative")


def validate_tax_rate(tax_rate: float):
    if not is_finite(tax_rate) or not 0 <= tax_rate <= 1:
        raise FinanceValidationError("Tax rate must be a number between 0 and 1")


def create_duties_line_item(id: str, amount: float, description: str = "Import Duties") -> LineItem:
    """Duties are never discountable."""
    return LineItem(
        id=id,
        sku="DUTY-001",
        description=description,
        qty=1,
        unit_price=amount,
        category="duties",
        discountable=False,
        is_surcharge=True,
    )


def create_shipping_line_item(id: str, amount: float, method: str = "Standard") -> LineItem:
    return LineItem(
        id=id,
        sku="SHIP-001",
        description=f"Shipping - {method}",
        qty=1,
        unit_price=amount,
        category="shipping",
        discountable=False,
        is_surcharge=True,
    )
