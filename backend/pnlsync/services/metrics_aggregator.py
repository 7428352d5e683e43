"""Financial KPI derivation for the client P&L report.

WHAT: Turns raw daily platform metrics plus a client's cost model into one
      derived row per date (AOV, ROAS, CPA, cost/profit per order, margin,
      targets, status tier)
WHY: The report sheet shows unit economics, not raw platform numbers
REFERENCES:
  - pnlsync/models.py: DailyMetric, FinancialProfile
  - pnlsync/services/sheet_sync_service.py: Consumes rows via format_row()
  - backend/tests_unit/test_metrics_formulas.py: Formula unit tests

Rules:
  - All arithmetic is Decimal at full precision; rounding to cents happens
    only in format_row() at the output boundary
  - Every division by zero yields 0
  - ROAS target is None ("unattainable") when the CPA target is <= 0
  - Cost per order is one aggregate figure (COGS + payment fee + merchant
    flat fee + shipping + fulfillment); fees are not itemized
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional, Union
from uuid import UUID

from sqlalchemy.orm import Session

from pnlsync.models import DailyMetric, FinancialProfile
from pnlsync.report_layout import STATUS_TOKENS, UNATTAINABLE_DISPLAY, StatusTier
from pnlsync.services.credential_store import load_client

ZERO = Decimal("0")
HUNDRED = Decimal("100")
CENT = Decimal("0.01")
WARNING_BAND = Decimal("0.9")

Number = Union[Decimal, int, float, None]


def to_decimal(value: Number) -> Decimal:
    """Coerce DB/driver values to Decimal without float artifacts."""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def safe_divide(numerator: Decimal, denominator: Decimal) -> Decimal:
    if denominator == 0:
        return ZERO
    return numerator / denominator


@dataclass(frozen=True)
class CostModel:
    """Per-order cost parameters; percentages are 0-100."""

    cogs_percentage: Decimal = ZERO
    payment_processing_fee_percentage: Decimal = ZERO
    merchant_account_fee_flat: Decimal = ZERO
    shipping_cost_per_order: Decimal = ZERO
    fulfillment_cost_per_order: Decimal = ZERO
    target_margin_percentage: Decimal = ZERO

    @classmethod
    def from_profile(cls, profile: Optional[FinancialProfile]) -> "CostModel":
        if profile is None:
            return cls()
        return cls(
            cogs_percentage=to_decimal(profile.cogs_percentage),
            payment_processing_fee_percentage=to_decimal(profile.payment_processing_fee_percentage),
            merchant_account_fee_flat=to_decimal(profile.merchant_account_fee_flat),
            shipping_cost_per_order=to_decimal(profile.shipping_cost_per_order),
            fulfillment_cost_per_order=to_decimal(profile.fulfillment_cost_per_order),
            target_margin_percentage=to_decimal(profile.target_margin_percentage),
        )


@dataclass(frozen=True)
class DerivedRow:
    """One report row. Built fresh on every sync, never persisted."""

    date: date
    revenue: Decimal
    orders: int
    ad_spend: Decimal
    aov: Decimal
    roas: Decimal
    cpa: Decimal
    cost_per_order: Decimal
    profit_per_order: Decimal
    margin_percentage: Decimal
    cpa_target: Decimal
    roas_target: Optional[Decimal]  # None = unattainable
    status_tier: StatusTier

    @property
    def roas_target_attainable(self) -> bool:
        return self.roas_target is not None


def classify_status(margin_percentage: Decimal, target_margin_percentage: Decimal) -> StatusTier:
    """GREEN at/above target, YELLOW from 90% of target (inclusive), else RED."""
    if margin_percentage >= target_margin_percentage:
        return StatusTier.green
    if margin_percentage >= WARNING_BAND * target_margin_percentage:
        return StatusTier.yellow
    return StatusTier.red


def derive_row(
    day: date,
    revenue: Number,
    orders: int,
    ad_spend: Number,
    cost_model: CostModel,
) -> DerivedRow:
    """Apply the unit-economics formula chain to one day's totals."""
    revenue = to_decimal(revenue)
    ad_spend = to_decimal(ad_spend)
    order_count = to_decimal(orders)

    aov = safe_divide(revenue, order_count)
    roas = safe_divide(revenue, ad_spend)
    cpa = safe_divide(ad_spend, order_count)

    cost_per_order = (
        aov * (cost_model.cogs_percentage / HUNDRED)
        + aov * (cost_model.payment_processing_fee_percentage / HUNDRED)
        + cost_model.merchant_account_fee_flat
        + cost_model.shipping_cost_per_order
        + cost_model.fulfillment_cost_per_order
    )
    profit_per_order = aov - cost_per_order - cpa
    margin_percentage = safe_divide(profit_per_order, aov) * HUNDRED

    target_profit = aov * cost_model.target_margin_percentage / HUNDRED
    cpa_target = aov - cost_per_order - target_profit
    roas_target = aov / cpa_target if cpa_target > 0 else None

    return DerivedRow(
        date=day,
        revenue=revenue,
        orders=int(orders or 0),
        ad_spend=ad_spend,
        aov=aov,
        roas=roas,
        cpa=cpa,
        cost_per_order=cost_per_order,
        profit_per_order=profit_per_order,
        margin_percentage=margin_percentage,
        cpa_target=cpa_target,
        roas_target=roas_target,
        status_tier=classify_status(margin_percentage, cost_model.target_margin_percentage),
    )


# ---------------------------------------------------------------------------
# Output formatting
# ---------------------------------------------------------------------------

def format_money(value: Optional[Decimal]) -> str:
    """Round half-up to cents. None renders as the unattainable marker."""
    if value is None:
        return UNATTAINABLE_DISPLAY
    rounded = value.quantize(CENT, rounding=ROUND_HALF_UP)
    if rounded == 0:
        rounded = abs(rounded)  # no "-0.00"
    return f"{rounded:.2f}"


def format_row(row: DerivedRow) -> list:
    """Cells for one report row, in report_layout.HEADERS order."""
    return [
        row.date.isoformat(),
        format_money(row.revenue),
        row.orders,
        format_money(row.aov),
        format_money(row.ad_spend),
        format_money(row.roas),
        format_money(row.cpa),
        format_money(row.profit_per_order),
        format_money(row.margin_percentage),
        STATUS_TOKENS[row.status_tier],
    ]


# ---------------------------------------------------------------------------
# Aggregator
# ---------------------------------------------------------------------------

class MetricsAggregator:
    """Reads a client's metrics window and derives report rows."""

    def __init__(self, db: Session):
        self.db = db

    def compute(
        self,
        client_id: UUID | str,
        window_days: int,
        today: Optional[date] = None,
    ) -> List[DerivedRow]:
        """Derived rows for [today - window_days, today], ascending by date.

        Platforms are summed per date before the formulas run, so ratios are
        computed on daily totals rather than averaged across platforms.
        """
        client = load_client(self.db, client_id)
        today = today or date.today()
        start = today - timedelta(days=window_days)

        metrics = (
            self.db.query(DailyMetric)
            .filter(
                DailyMetric.client_id == client.id,
                DailyMetric.date >= start,
                DailyMetric.date <= today,
            )
            .order_by(DailyMetric.date.asc(), DailyMetric.platform.asc())
            .all()
        )

        totals: "OrderedDict[date, list]" = OrderedDict()
        for metric in metrics:
            day_totals = totals.setdefault(metric.date, [ZERO, 0, ZERO])
            day_totals[0] += to_decimal(metric.revenue)
            day_totals[1] += int(metric.orders or 0)
            day_totals[2] += to_decimal(metric.ad_spend)

        cost_model = CostModel.from_profile(client.financial_profile)
        return [
            derive_row(day, revenue, orders, ad_spend, cost_model)
            for day, (revenue, orders, ad_spend) in totals.items()
        ]
