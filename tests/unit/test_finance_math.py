import pytest
from decimal import Decimal

from backoffice.errors import FinanceValidationError
from backoffice.models.finance import Discount, LineItem
from backoffice.tools.finance_math import (
    calculate_totals,
    create_duties_line_item,
    create_shipping_line_item,
    is_line_eligible,
)


def d(value):
    return Decimal(str(value))


def test_end_to_end_totals(sample_line_items, ten_percent_off):
    result = calculate_totals(sample_line_items, [ten_percent_off], tax_rate=0.08)

    assert result.subtotal == 100.0
    assert result.discount_amount == 10.0
    assert result.after_discounts == 90.0
    assert result.tax_amount == 7.2
    assert result.grand_total == 97.2

    line = result.line_items[0]
    assert line.line_subtotal == 100.0
    assert line.discount_amount == 10.0
    assert line.after_discounts == 90.0
    assert line.taxable_amount == 90.0

    assert result.applied_discounts[0].discount_id == "D-PCT"
    assert result.applied_discounts[0].applied_to_lines == ["L1"]


def test_flat_discounts_apply_before_percent():
    lines = [LineItem(id="L1", sku="A", qty=1, unit_price=100)]
    # Percent listed first; flat must still go first
    discounts = [
        Discount(id="D-PCT", type="percent", value=10),
        Discount(id="D-FLAT", type="flat", value=10),
    ]

    result = calculate_totals(lines, discounts)

    assert result.discount_amount == 19.0
    assert result.after_discounts == 81.0
    assert [a.discount_id for a in result.applied_discounts] == ["D-FLAT", "D-PCT"]
    assert [a.amount for a in result.applied_discounts] == [10.0, 9.0]


def test_same_type_discounts_keep_caller_order():
    lines = [LineItem(id="L1", sku="A", qty=1, unit_price=100)]
    discounts = [
        Discount(id="P1", type="percent", value=50),
        Discount(id="F1", type="flat", value=10),
        Discount(id="P2", type="percent", value=10),
        Discount(id="F2", type="flat", value=5),
    ]

    result = calculate_totals(lines, discounts)

    assert [a.discount_id for a in result.applied_discounts] == ["F1", "F2", "P1", "P2"]
    # 100 - 10 - 5 = 85, 50% -> 42.50, then 10% of 42.50 -> 4.25
    assert [a.amount for a in result.applied_discounts] == [10.0, 5.0, 42.5, 4.25]
    assert result.after_discounts == 38.25


def test_non_discountable_line_gets_no_discount():
    lines = [
        LineItem(id="L1", sku="A", qty=1, unit_price=100),
        create_duties_line_item("DUTY", 50),
    ]
    discounts = [
        Discount(id="D-FLAT", type="flat", value=20, scope="all"),
        Discount(id="D-PCT", type="percent", value=10, scope="all"),
    ]

    result = calculate_totals(lines, discounts)

    duties = result.line_items[1]
    assert duties.discount_amount == 0.0
    assert duties.after_discounts == 50.0
    assert result.line_items[0].discount_amount == 28.0
    assert result.subtotal == 150.0
    assert result.after_discounts == 122.0
    for applied in result.applied_discounts:
        assert applied.applied_to_lines == ["L1"]


def test_flat_discount_split_by_current_net():
    lines = [
        LineItem(id="L1", sku="A", qty=1, unit_price=75),
        LineItem(id="L2", sku="B", qty=1, unit_price=25),
    ]

    result = calculate_totals(lines, [Discount(id="D1", type="flat", value=10)])

    assert [l.discount_amount for l in result.line_items] == [7.5, 2.5]
    assert result.discount_amount == 10.0


def test_flat_discount_with_zero_eligible_net_distributes_nothing():
    lines = [LineItem(id="L1", sku="FREE", qty=1, unit_price=0)]

    result = calculate_totals(lines, [Discount(id="D1", type="flat", value=10)])

    assert result.discount_amount == 0.0
    assert result.applied_discounts[0].amount == 0.0
    assert result.applied_discounts[0].applied_to_lines == []
    assert result.grand_total == 0.0


def test_category_scope():
    lines = [
        LineItem(id="L1", sku="STOR", qty=1, unit_price=100, category="storage"),
        LineItem(id="L2", sku="HNDL", qty=1, unit_price=100, category="handling"),
    ]

    result = calculate_totals(lines, [Discount(id="D1", type="percent", value=10, scope="category:storage")])

    assert result.line_items[0].discount_amount == 10.0
    assert result.line_items[1].discount_amount == 0.0
    assert result.discount_amount == 10.0


def test_non_surcharges_scope_skips_surcharges():
    lines = [
        LineItem(id="L1", sku="A", qty=1, unit_price=100),
        LineItem(id="FUEL", sku="FUEL", qty=1, unit_price=20, is_surcharge=True),
    ]

    result = calculate_totals(lines, [Discount(id="D1", type="percent", value=50, scope="non_surcharges")])

    assert result.discount_amount == 50.0
    assert result.line_items[1].discount_amount == 0.0


def test_unknown_scope_matches_nothing():
    line = LineItem(id="L1", sku="A", qty=1, unit_price=100)
    discount = Discount(id="D1", type="percent", value=10, scope="vendor:acme")

    assert is_line_eligible(line, discount) is False
    assert calculate_totals([line], [discount]).discount_amount == 0.0


@pytest.mark.parametrize("mode,tax,grand_total", [
    ("HALF_UP", 5.03, 105.53),
    ("HALF_EVEN", 5.02, 105.52),
])
def test_rounding_mode_governs_tax(mode, tax, grand_total):
    # 100.50 * 0.05 = 5.025 exactly
    lines = [LineItem(id="L1", sku="A", qty=1, unit_price=100.5)]

    result = calculate_totals(lines, [], tax_rate=0.05, rounding_mode=mode)

    assert result.tax_amount == tax
    assert result.grand_total == grand_total


def test_identical_inputs_give_identical_output(sample_line_items, ten_percent_off):
    first = calculate_totals(sample_line_items, [ten_percent_off], tax_rate=0.0725)
    second = calculate_totals(sample_line_items, [ten_percent_off], tax_rate=0.0725)

    assert first.model_dump() == second.model_dump()


def test_inputs_are_not_mutated(sample_line_items, ten_percent_off):
    before = [line.model_dump() for line in sample_line_items]

    calculate_totals(sample_line_items, [ten_percent_off], tax_rate=0.08)

    assert [line.model_dump() for line in sample_line_items] == before


def test_totals_reconcile_with_uneven_amounts():
    lines = [
        LineItem(id="L1", sku="A", qty=3, unit_price=19.99),
        LineItem(id="L2", sku="B", qty=7, unit_price=3.33, category="vas"),
        LineItem(id="L3", sku="C", qty=1, unit_price=0.01),
        LineItem(id="L4", sku="D", qty=1, unit_price=33.33),
        create_shipping_line_item("SHIP", 12.49, "Express"),
    ]
    discounts = [
        Discount(id="P1", type="percent", value=12.5),
        Discount(id="F1", type="flat", value=5.55),
        Discount(id="P2", type="percent", value=3, scope="category:vas"),
    ]

    result = calculate_totals(lines, discounts, tax_rate=0.0725, rounding_mode="HALF_EVEN")

    assert d(result.subtotal) - d(result.discount_amount) == d(result.after_discounts)
    assert d(result.after_discounts) + d(result.tax_amount) == d(result.grand_total)
    assert sum(d(l.discount_amount) for l in result.line_items) == d(result.discount_amount)
    assert sum(d(a.amount) for a in result.applied_discounts) == d(result.discount_amount)
    for line in result.line_items:
        assert d(line.line_subtotal) - d(line.discount_amount) == d(line.after_discounts)


def test_totals_event_emitted(sample_line_items, ten_percent_off, event_log):
    calculate_totals(sample_line_items, [ten_percent_off], tax_rate=0.08, sink=event_log)

    events = event_log.for_action("totals_calculated")
    assert len(events) == 1
    assert events[0].details["grand_total"] == 97.2
    assert events[0].details["line_count"] == 1


def test_factory_line_items():
    shipping = create_shipping_line_item("S1", 15.0, "Express")
    duties = create_duties_line_item("D1", 42.0)

    assert shipping.sku == "SHIP-001"
    assert shipping.description == "Shipping - Express"
    assert shipping.discountable is False
    assert duties.sku == "DUTY-001"
    assert duties.discountable is False


@pytest.mark.parametrize("lines,discounts,kwargs,message", [
    ([], [], {}, "Line items cannot be empty"),
    ([LineItem(id="L1", sku="A", qty=0, unit_price=1)], [], {}, "quantity must be > 0"),
    ([LineItem(id="L1", sku="A", qty=1, unit_price=-1)], [], {}, "unit price cannot be negative"),
    ([LineItem(id="L1", sku="", qty=1, unit_price=1)], [], {}, "missing SKU"),
    ([LineItem(id=" ", sku="A", qty=1, unit_price=1)], [], {}, "Line item missing ID"),
    ([LineItem(id="L1", sku="A", qty=float("nan"), unit_price=1)], [], {}, "invalid numeric values"),
    ([LineItem(id="L1", sku="A", qty=1, unit_price=1)], [Discount(id="D1", type="percent", value=101)], {}, "percentage must be 0-100"),
    ([LineItem(id="L1", sku="A", qty=1, unit_price=1)], [Discount(id="D1", type="flat", value=-1)], {}, "flat amount cannot be negative"),
    ([LineItem(id="L1", sku="A", qty=1, unit_price=1)], [Discount(id="", type="flat", value=1)], {}, "Discount missing ID"),
    ([LineItem(id="L1", sku="A", qty=1, unit_price=1)], [], {"tax_rate": 1.5}, "Tax rate must be a number between 0 and 1"),
    ([LineItem(id="L1", sku="A", qty=1, unit_price=1)], [], {"tax_rate": float("inf")}, "Tax rate must be a number between 0 and 1"),
    ([LineItem(id="L1", sku="A", qty=1, unit_price=1)], [], {"rounding_mode": "HALF_DOWN"}, "Unsupported rounding mode"),
])
def test_invalid_inputs_rejected(lines, discounts, kwargs, message):
    with pytest.raises(FinanceValidationError, match=message):
        calculate_totals(lines, discounts, **kwargs)


def test_validation_error_is_value_error():
    with pytest.raises(ValueError):
        calculate_totals([], [])
