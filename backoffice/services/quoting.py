import logging
import uuid
from typing import Iterable, List, Optional

from backoffice.config import settings
from backoffice.database import Database
from backoffice.guardrails.audit_logger import EventSink, emit
from backoffice.models.finance import CalculationResult, LineItem, RoundingMode
from backoffice.models.quote import (
    BenchmarkRate,
    CompetitorBaseline,
    Lane,
    LaneEnd,
    PricingContext,
    QuoteComparison,
    QuoteInput,
    QuoteItemRequest,
    QuoteResult,
    ValueAddedOption,
)
from backoffice.tools.finance_math import calculate_totals
from backoffice.tools.money import round_currency, to_decimal

logger = logging.getLogger(__name__)

# (mode, service level, code, category, uom) for the volume-driven lines
STANDARD_SERVICES = [
    ("receiving", "standard", "RCV_STD", "Receiving", "per_unit"),
    ("fulfillment", "pick_pack", "PICK_PACK", "Fulfillment", "per_order"),
    ("storage", "standard", "STOR_STD", "Storage", "per_month"),
]


def end_specificity(zip3: Optional[str], state: Optional[str]) -> int:
    if zip3:
        return 4
    if state:
        return 2
    return 1


def rate_specificity(rate: BenchmarkRate) -> int:
    return (end_specificity(rate.origin_zip3, rate.origin_state)
            + end_specificity(rate.dest_zip3, rate.dest_state))


def _end_matches(end: LaneEnd, country: str, state: Optional[str], zip3: Optional[str]) -> bool:
    if country != end.country:
        return False
    # A side left blank on either the lane or the rate is a wildcard
    if end.state and state and state != end.state:
        return False
    if end.zip3 and zip3 and zip3 != end.zip3:
        return False
    return True


def resolve_lane_rates(lane: Lane, rates: Iterable[BenchmarkRate]) -> List[BenchmarkRate]:
    """Rates applicable to the lane, most specific first (zip3, then state, then country)."""
    candidates = [
        rate for rate in rates
        if _end_matches(lane.origin, rate.origin_country, rate.origin_state, rate.origin_zip3)
        and _end_matches(lane.dest, rate.dest_country, rate.dest_state, rate.dest_zip3)
    ]
    return sorted(candidates, key=rate_specificity, reverse=True)


class QuotePricingEngine:
    """
    Builds priced quote lines from benchmark rates and value-added options,
    then totals them with the shared discount engine.
    """

    def __init__(self,
                 db: Optional[Database] = None,
                 sink: Optional[EventSink] = None,
                 tax_rate: Optional[float] = None,
                 rounding_mode: RoundingMode = "HALF_UP"):
        self.db = db
        self.sink = sink
        self.tax_rate = settings.QUOTE_TAX_RATE if tax_rate is None else tax_rate
        self.rounding_mode = rounding_mode

    async def generate_quote(self, quote_input: QuoteInput, context: PricingContext, actor: str = "system") -> QuoteResult:
        emit(self.sink, "quote_generation_started", {
            "module": "quoting",
            "actor": actor,
            "version_id": quote_input.version_id,
            "lane": quote_input.lane.model_dump(exclude_none=True),
        })
        try:
            lines = self.build_lines(quote_input, context)
            totals = calculate_totals(lines, quote_input.discounts, self.tax_rate, self.rounding_mode, sink=self.sink)
        except Exception as e:
            logger.error(f"Quote generation failed for version {quote_input.version_id}: {e}")
            emit(self.sink, "quote_generation_failed", {"module": "quoting", "actor": actor, "error": str(e)})
            raise

        comparison = None
        if quote_input.competitor_baseline:
            comparison = compare_to_baseline(totals, quote_input.competitor_baseline)

        result = QuoteResult(
            quote_id=f"Q-{uuid.uuid4().hex[:12]}",
            version_id=quote_input.version_id,
            totals=totals,
            comparison=comparison
        )
        if self.db:
            await self.db.quotes.put(result)

        emit(self.sink, "quote_generated", {
            "module": "quoting",
            "actor": actor,
            "quote_id": result.quote_id,
            "line_count": len(lines),
            "grand_total": totals.grand_total,
            "has_comparison": comparison is not None,
        })
        logger.info(f"Quote {result.quote_id}: {len(lines)} lines, total {totals.grand_total:.2f}")
        return result

    def build_lines(self, quote_input: QuoteInput, context: PricingContext) -> List[LineItem]:
        rates = resolve_lane_rates(quote_input.lane, context.benchmark_rates)
        quantities = {
            "receiving": quote_input.volumes.units_received,
            "fulfillment": quote_input.volumes.orders_shipped,
            "storage": quote_input.assumptions.storage_months,
        }

        lines: List[LineItem] = []
        for mode, service_level, code, category, uom in STANDARD_SERVICES:
            qty = quantities[mode]
            if not qty:
                continue
            rate = next((r for r in rates if r.mode == mode and r.service_level == service_level), None)
            if not rate:
                logger.warning(f"No {mode}/{service_level} benchmark rate for lane, {code} skipped")
                continue
            lines.append(self._line(len(lines) + 1, code, category, uom, qty, rate.rate_benchmark))

        lines.extend(self._option_lines(quote_input.vas, context.value_added_options, len(lines), surcharge=False))
        lines.extend(self._option_lines(quote_input.surcharges, context.value_added_options, len(lines), surcharge=True))
        return lines

    def _option_lines(self, requests: List[QuoteItemRequest], options: List[ValueAddedOption], offset: int, surcharge: bool) -> List[LineItem]:
        by_code = {}
        for option in options:
            by_code.setdefault(option.code, option)

        lines = []
        for request in requests:
            option = by_code.get(request.code)
            if not option:
                logger.warning(f"Unknown value-added option {request.code} skipped")
                continue
            lines.append(self._line(
                offset + len(lines) + 1,
                request.code,
                "Surcharge" if surcharge else "VAS",
                option.unit,
                request.qty,
                option.default_rate,
                surcharge=surcharge
            ))
        return lines

    @staticmethod
    def _line(n: int, code: str, category: str, uom: str, qty: float, rate: float, surcharge: bool = False) -> LineItem:
        # Surcharges are never discounted
        return LineItem(
            id=f"QL-{n:03d}",
            sku=code,
            description=f"{category} {code} ({uom})",
            qty=qty,
            unit_price=rate,
            category=category,
            discountable=not surcharge,
            is_surcharge=surcharge
        )


def compare_to_baseline(totals: CalculationResult, baseline: CompetitorBaseline) -> QuoteComparison:
    delta = to_decimal(totals.grand_total) - to_decimal(baseline.amount)
    delta_percent = 0.0
    if baseline.amount > 0:
        delta_percent = round_currency(to_decimal(round_currency(delta)) / to_decimal(baseline.amount) * 100)
    return QuoteComparison(
        competitor_label=baseline.label,
        competitor_amount=baseline.amount,
        delta_amount=round_currency(delta),
        delta_percent=delta_percent
    )
