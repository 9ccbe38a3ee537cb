"""
Allocation Aggregator for the Correlation Engine.

Folds resolved allocations onto normalized line items:
- allocated_amount per budget item = Σ resolved amounts, floored at 0
- quoted_cost per budget item = Σ accepted quote line costs referencing it
  (the estimate itself when nothing is quoted)
- status: full / partial / none against the quoted-or-estimated baseline
- CategorySummary per category, AllocationSummary over external categories

Input line items are never mutated; annotated copies are returned.
"""
import logging
from collections import defaultdict
from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from ..config import get_config
from ..domain.entities import (
    AllocatedExpense,
    AllocationSourceKind,
    AllocationStatus,
    AllocationSummary,
    CategorySummary,
    CostCategory,
    ExpenseRecord,
    LineItem,
    LineItemAllocationDetail,
    LineItemDetail,
    ResolvedAllocation,
    SourceType,
)
from ..domain.money import ZERO

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AggregationResult:
    """Immutable output of one aggregation pass."""
    line_items: Tuple[LineItem, ...] = ()
    line_item_details: Tuple[LineItemDetail, ...] = ()
    categories: Tuple[CategorySummary, ...] = ()
    allocation_summary: AllocationSummary = field(
        default_factory=lambda: AllocationSummary(0, 0, 0)
    )

    def get_line_item(self, line_item_id: str) -> Optional[LineItem]:
        for item in self.line_items:
            if item.id == line_item_id:
                return item
        return None

    def get_detail(self, line_item_id: str) -> Optional[LineItemDetail]:
        for detail in self.line_item_details:
            if detail.id == line_item_id:
                return detail
        return None

    def get_category(self, category: CostCategory) -> Optional[CategorySummary]:
        for summary in self.categories:
            if summary.category == category:
                return summary
        return None

    @property
    def total_allocated(self) -> Decimal:
        return sum((c.actual_cost for c in self.categories), ZERO)


# =============================================================================
# Status
# =============================================================================

def allocation_status(
    allocated: Decimal,
    baseline: Decimal,
    threshold: Optional[Decimal] = None,
) -> AllocationStatus:
    """
    Derive allocation status of one item.

    full    - allocated > 0 and allocated >= threshold × baseline
    partial - 0 < allocated < threshold × baseline
    none    - nothing allocated
    """
    if threshold is None:
        threshold = get_config().full_allocation_threshold

    if allocated <= 0:
        return AllocationStatus.NONE
    if allocated >= threshold * baseline:
        return AllocationStatus.FULL
    return AllocationStatus.PARTIAL


def sum_allocations(allocations: Iterable[ResolvedAllocation]) -> Dict[str, Decimal]:
    """Total resolved amount per target line item."""
    totals: Dict[str, Decimal] = defaultdict(lambda: ZERO)
    for allocation in allocations:
        totals[allocation.target_line_item_id] += allocation.amount
    return dict(totals)


# =============================================================================
# Aggregation Pass
# =============================================================================

def _annotate(line_items: List[LineItem], totals: Dict[str, Decimal]) -> List[LineItem]:
    """
    Copy line items with their allocated amounts filled in.

    Only budget items are allocation targets; quote items stay at zero so
    every dollar is counted once in category rollups.
    """
    return [
        replace(
            item,
            allocated_amount=max(ZERO, totals.get(item.id, ZERO)) if item.is_budget_item else ZERO,
        )
        for item in line_items
    ]


def _quotes_by_target(line_items: List[LineItem]) -> Dict[str, List[LineItem]]:
    """Accepted quote line items grouped by every budget item they reference."""
    quotes: Dict[str, List[LineItem]] = defaultdict(list)
    for item in line_items:
        if item.source_type != SourceType.QUOTE:
            continue
        targets = {item.estimate_line_item_id, item.change_order_line_item_id} - {None}
        for target_id in targets:
            quotes[target_id].append(item)
    return quotes


def _build_detail(
    item: LineItem,
    quotes: List[LineItem],
    threshold: Decimal,
) -> LineItemDetail:
    estimated = item.baseline_cost
    has_quote = len(quotes) > 0
    quoted = sum((q.baseline_cost for q in quotes), ZERO) if has_quote else estimated
    baseline = quoted if quoted > 0 else estimated

    return LineItemDetail(
        id=item.id,
        source_type=item.source_type,
        category=item.category,
        description=item.description,
        estimated_cost=estimated,
        quoted_cost=quoted,
        actual_cost=item.allocated_amount,
        has_accepted_quote=has_quote,
        quote_payee=quotes[0].payee_name if has_quote else None,
        allocation_status=allocation_status(item.allocated_amount, baseline, threshold),
        change_order_number=item.change_order_number,
    )


def build_category_summaries(details: Iterable[LineItemDetail]) -> Tuple[CategorySummary, ...]:
    """Roll line item details up by category, ordered by category value."""
    grouped: Dict[CostCategory, List[LineItemDetail]] = defaultdict(list)
    for detail in details:
        grouped[detail.category].append(detail)

    summaries = []
    for category in sorted(grouped, key=lambda c: c.value):
        members = grouped[category]
        summaries.append(CategorySummary(
            category=category,
            estimated_cost=sum((d.estimated_cost for d in members), ZERO),
            quoted_cost=sum((d.quoted_cost for d in members), ZERO),
            actual_cost=sum((d.actual_cost for d in members), ZERO),
            line_items=tuple(members),
        ))
    return tuple(summaries)


def _allocated_expenses(
    allocations: List[ResolvedAllocation],
    expenses_by_id: Dict[str, ExpenseRecord],
) -> Tuple[AllocatedExpense, ...]:
    rows = []
    for allocation in allocations:
        expense = expenses_by_id.get(allocation.expense_id)
        rows.append(AllocatedExpense(
            id=allocation.source_id,
            amount=allocation.amount,
            is_split=allocation.source_kind == AllocationSourceKind.SPLIT,
            expense_date=expense.expense_date if expense else None,
            payee=(expense.payee_name if expense and expense.payee_name else "Unknown"),
            description=(expense.description if expense else ""),
        ))
    return tuple(rows)


def build_allocation_summary(
    line_items: Iterable[LineItem],
    details: Dict[str, LineItemDetail],
    allocations: Iterable[ResolvedAllocation],
    expenses: Iterable[ExpenseRecord] = (),
    internal_categories: Optional[List[str]] = None,
) -> AllocationSummary:
    """
    Summarize allocation coverage of external budget items.

    Internal categories (labor and management by default) carry no
    vendor-side documentation and are left out.
    """
    if internal_categories is None:
        internal_categories = get_config().internal_categories
    internal = set(internal_categories)

    expenses_by_id = {e.id: e for e in expenses}
    by_target: Dict[str, List[ResolvedAllocation]] = defaultdict(list)
    for allocation in allocations:
        by_target[allocation.target_line_item_id].append(allocation)

    rows = []
    for item in line_items:
        if not item.is_budget_item or item.category.value in internal:
            continue
        detail = details[item.id]
        rows.append(LineItemAllocationDetail(
            id=item.id,
            source_type=item.source_type,
            category=item.category,
            description=item.description,
            estimated_cost=detail.estimated_cost,
            quoted_cost=detail.quoted_cost,
            quoted_by=detail.quote_payee,
            allocated_amount=item.allocated_amount,
            allocation_status=detail.allocation_status,
            expenses=_allocated_expenses(by_target.get(item.id, []), expenses_by_id),
            change_order_number=item.change_order_number,
        ))

    allocated_count = sum(1 for r in rows if r.allocation_status == AllocationStatus.FULL)
    return AllocationSummary(
        total_external_line_items=len(rows),
        allocated_count=allocated_count,
        pending_count=len(rows) - allocated_count,
        line_items=tuple(rows),
    )


def aggregate(
    line_items: Iterable[LineItem],
    allocations: Iterable[ResolvedAllocation],
    expenses: Iterable[ExpenseRecord] = (),
    threshold: Optional[Decimal] = None,
    internal_categories: Optional[List[str]] = None,
) -> AggregationResult:
    """
    Aggregate resolved allocations onto line items.

    Args:
        line_items: Normalized line items (estimate, quote, change order)
        allocations: Deduplicated resolved allocations
        expenses: Expense rows, used for dates / payees in allocation details
        threshold: Fraction of baseline that counts as fully allocated
        internal_categories: Categories excluded from the allocation summary

    Returns:
        AggregationResult
    """
    if threshold is None:
        threshold = get_config().full_allocation_threshold

    allocations = list(allocations)
    annotated = _annotate(list(line_items), sum_allocations(allocations))
    quotes = _quotes_by_target(annotated)

    details = [
        _build_detail(item, quotes.get(item.id, []), threshold)
        for item in annotated
        if item.is_budget_item
    ]
    categories = build_category_summaries(details)
    summary = build_allocation_summary(
        annotated,
        {d.id: d for d in details},
        allocations,
        expenses,
        internal_categories,
    )

    logger.debug(
        f"Aggregated {len(allocations)} allocations over {len(details)} budget items "
        f"in {len(categories)} categories"
    )

    return AggregationResult(
        line_items=tuple(annotated),
        line_item_details=tuple(details),
        categories=categories,
        allocation_summary=summary,
    )
