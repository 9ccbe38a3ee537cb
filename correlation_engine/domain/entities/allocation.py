"""
Allocation Entities - resolved allocations and the summaries built from them.

Funds flow: Expense / Split -> CorrelationLink -> ResolvedAllocation
-> LineItem -> CategorySummary
"""
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import List, Optional, Tuple

from .line_item import AllocationStatus, CostCategory, SourceType

ZERO = Decimal("0")


class AllocationSourceKind(Enum):
    """Whether money came from a whole expense or one split of it."""
    EXPENSE = "expense"
    SPLIT = "split"


class ResolutionPath(Enum):
    """Route a correlation link took to reach its target."""
    DIRECT_ESTIMATE = "direct_estimate"
    DIRECT_CHANGE_ORDER = "direct_change_order"
    QUOTE_TO_ESTIMATE = "quote_to_estimate"
    QUOTE_TO_CHANGE_ORDER = "quote_to_change_order"


@dataclass(frozen=True)
class ResolvedAllocation:
    """
    One correlation link resolved to a concrete budget line item.

    Attributes:
        target_line_item_id: Estimate or change-order line item receiving the money
        source_kind: expense or split
        source_id: Expense id or split id the amount came from
        expense_id: Parent expense id (same as source_id for whole expenses)
        amount: Expense amount, or the split amount for split links
        link_id: Correlation link that produced this allocation
        path: Resolution route
    """

    target_line_item_id: str
    source_kind: AllocationSourceKind
    source_id: str
    expense_id: str
    amount: Decimal
    link_id: str
    path: ResolutionPath

    @property
    def dedup_key(self) -> Tuple[str, str, str]:
        """Key under which the same money may be counted only once."""
        return (self.target_line_item_id, self.source_kind.value, self.source_id)


@dataclass(frozen=True)
class AllocatedExpense:
    """Expense (or split) row backing a line item's allocated amount."""

    id: str
    amount: Decimal
    is_split: bool = False
    expense_date: Optional[date] = None
    payee: str = "Unknown"
    description: str = ""

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'date': self.expense_date.isoformat() if self.expense_date else '',
            'payee': self.payee,
            'description': self.description,
            'amount': float(self.amount),
            'is_split': self.is_split,
        }


@dataclass(frozen=True)
class LineItemDetail:
    """Estimate / quote / actual figures for one budget line item."""

    id: str
    source_type: SourceType
    category: CostCategory
    description: str
    estimated_cost: Decimal
    quoted_cost: Decimal
    actual_cost: Decimal
    has_accepted_quote: bool
    quote_payee: Optional[str]
    allocation_status: AllocationStatus
    change_order_number: Optional[str] = None

    @property
    def baseline_cost(self) -> Decimal:
        """Quoted cost when positive, otherwise the estimate."""
        return self.quoted_cost if self.quoted_cost > 0 else self.estimated_cost

    @property
    def variance(self) -> Decimal:
        return self.actual_cost - self.baseline_cost

    @property
    def variance_percent(self) -> float:
        baseline = self.baseline_cost
        if baseline == 0:
            return 0.0
        return float(self.variance / baseline * 100)

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'source_type': self.source_type.value,
            'category': self.category.value,
            'description': self.description,
            'estimated_cost': float(self.estimated_cost),
            'quoted_cost': float(self.quoted_cost),
            'actual_cost': float(self.actual_cost),
            'variance': float(self.variance),
            'variance_percent': self.variance_percent,
            'has_accepted_quote': self.has_accepted_quote,
            'quote_payee': self.quote_payee,
            'allocation_status': self.allocation_status.value,
            'change_order_number': self.change_order_number,
        }


@dataclass(frozen=True)
class CategorySummary:
    """
    Rollup of all budget line items sharing a category within a project.

    actual_cost always equals the sum of the member items' allocated amounts.
    """

    category: CostCategory
    estimated_cost: Decimal = ZERO
    quoted_cost: Decimal = ZERO
    actual_cost: Decimal = ZERO
    line_items: Tuple[LineItemDetail, ...] = field(default_factory=tuple)

    @property
    def baseline_cost(self) -> Decimal:
        return self.quoted_cost if self.quoted_cost > 0 else self.estimated_cost

    @property
    def variance(self) -> Decimal:
        """Actual minus baseline (positive = over budget)."""
        return self.actual_cost - self.baseline_cost

    @property
    def variance_percent(self) -> float:
        """Variance relative to baseline; 0 when the baseline is 0."""
        baseline = self.baseline_cost
        if baseline == 0:
            return 0.0
        return float(self.variance / baseline * 100)

    def to_dict(self) -> dict:
        return {
            'category': self.category.value,
            'estimated_cost': float(self.estimated_cost),
            'quoted_cost': float(self.quoted_cost),
            'actual_cost': float(self.actual_cost),
            'variance': float(self.variance),
            'variance_percent': self.variance_percent,
            'line_items': [li.to_dict() for li in self.line_items],
        }


@dataclass(frozen=True)
class LineItemAllocationDetail:
    """Allocation coverage for one external budget line item."""

    id: str
    source_type: SourceType
    category: CostCategory
    description: str
    estimated_cost: Decimal
    quoted_cost: Decimal
    quoted_by: Optional[str]
    allocated_amount: Decimal
    allocation_status: AllocationStatus
    expenses: Tuple[AllocatedExpense, ...] = field(default_factory=tuple)
    change_order_number: Optional[str] = None

    @property
    def has_allocation(self) -> bool:
        return len(self.expenses) > 0

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'source': self.source_type.value,
            'change_order_number': self.change_order_number,
            'category': self.category.value,
            'description': self.description,
            'estimated_cost': float(self.estimated_cost),
            'quoted_cost': float(self.quoted_cost),
            'quoted_by': self.quoted_by,
            'allocated_amount': float(self.allocated_amount),
            'has_allocation': self.has_allocation,
            'allocation_status': self.allocation_status.value,
            'expenses': [e.to_dict() for e in self.expenses],
        }


@dataclass(frozen=True)
class AllocationSummary:
    """
    Project-wide allocation coverage of external line items.

    An item counts as allocated once its status is full; everything
    else is pending and surfaces as needing attention.
    """

    total_external_line_items: int
    allocated_count: int
    pending_count: int
    line_items: Tuple[LineItemAllocationDetail, ...] = field(default_factory=tuple)

    @property
    def allocation_percent(self) -> float:
        if self.total_external_line_items == 0:
            return 100.0
        return self.allocated_count / self.total_external_line_items * 100

    def needs_attention(self) -> List[LineItemAllocationDetail]:
        """External items whose allocations do not yet cover their baseline."""
        return [li for li in self.line_items if li.allocation_status != AllocationStatus.FULL]

    def to_dict(self) -> dict:
        return {
            'total_external_line_items': self.total_external_line_items,
            'allocated_count': self.allocated_count,
            'pending_count': self.pending_count,
            'allocation_percent': self.allocation_percent,
            'line_items': [li.to_dict() for li in self.line_items],
        }
