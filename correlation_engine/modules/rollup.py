"""
Variance / Rollup Calculator.

Pure arithmetic over category summaries:
- estimate → quote change (absolute and % of estimate)
- quote → actual change (absolute and % of quote)
- optional margin projection against a contract amount

Every percentage is 0 when its denominator is 0.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, Optional

from ..domain.entities import CategorySummary
from ..domain.money import ZERO, safe_percent


@dataclass(frozen=True)
class VarianceFigures:
    """Estimate → quote → actual deltas for a project or one category."""
    estimated_total: Decimal
    quoted_total: Decimal
    actual_total: Decimal
    estimate_to_quote_change: Decimal
    estimate_to_quote_percent: float
    quote_to_actual_change: Decimal
    quote_to_actual_percent: float

    @property
    def baseline_total(self) -> Decimal:
        return self.quoted_total if self.quoted_total > 0 else self.estimated_total

    def to_dict(self) -> Dict:
        return {
            'estimated_total': float(self.estimated_total),
            'quoted_total': float(self.quoted_total),
            'actual_total': float(self.actual_total),
            'estimate_to_quote_change': float(self.estimate_to_quote_change),
            'estimate_to_quote_percent': self.estimate_to_quote_percent,
            'quote_to_actual_change': float(self.quote_to_actual_change),
            'quote_to_actual_percent': self.quote_to_actual_percent,
        }


@dataclass(frozen=True)
class MarginFigures:
    """Projected margin against the contract amount."""
    contract_amount: Decimal
    projected_final_cost: Decimal
    projected_margin: Decimal
    projected_margin_percent: float
    burn_rate: float

    def to_dict(self) -> Dict:
        return {
            'contract_amount': float(self.contract_amount),
            'projected_final_cost': float(self.projected_final_cost),
            'projected_margin': float(self.projected_margin),
            'projected_margin_percent': self.projected_margin_percent,
            'burn_rate': self.burn_rate,
        }


def compute_variance_from_totals(
    estimated_total: Decimal,
    quoted_total: Decimal,
    actual_total: Decimal,
) -> VarianceFigures:
    """Variance figures from project-level totals."""
    estimate_to_quote = quoted_total - estimated_total
    quote_to_actual = actual_total - quoted_total
    return VarianceFigures(
        estimated_total=estimated_total,
        quoted_total=quoted_total,
        actual_total=actual_total,
        estimate_to_quote_change=estimate_to_quote,
        estimate_to_quote_percent=safe_percent(estimate_to_quote, estimated_total),
        quote_to_actual_change=quote_to_actual,
        quote_to_actual_percent=safe_percent(quote_to_actual, quoted_total),
    )


def compute_variance(categories: Iterable[CategorySummary]) -> VarianceFigures:
    """
    Project-level variance figures from category summaries.

    Args:
        categories: Category summaries of one project

    Returns:
        VarianceFigures over the summed totals
    """
    categories = list(categories)
    return compute_variance_from_totals(
        sum((c.estimated_cost for c in categories), ZERO),
        sum((c.quoted_cost for c in categories), ZERO),
        sum((c.actual_cost for c in categories), ZERO),
    )


def compute_category_variances(categories: Iterable[CategorySummary]) -> Dict[str, VarianceFigures]:
    """Variance figures per category, keyed by category value."""
    return {
        c.category.value: compute_variance_from_totals(c.estimated_cost, c.quoted_cost, c.actual_cost)
        for c in categories
    }


def compute_margin(variance: VarianceFigures, contract_amount: Optional[Decimal]) -> Optional[MarginFigures]:
    """
    Project margin figures.

    projected_final_cost = max(actual, baseline): spend never projects below
    what has already been paid.
    """
    if contract_amount is None:
        return None

    baseline = variance.baseline_total
    projected_final = max(variance.actual_total, baseline)
    margin = contract_amount - projected_final
    return MarginFigures(
        contract_amount=contract_amount,
        projected_final_cost=projected_final,
        projected_margin=margin,
        projected_margin_percent=safe_percent(margin, contract_amount),
        burn_rate=safe_percent(variance.actual_total, baseline),
    )
