"""
Line Item Entity - the normalized unit every ledger is flattened into.

Estimate, quote and change-order line items all become a LineItem with a
source tag, a baseline cost and a derived allocated amount.
"""
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Optional

ZERO = Decimal("0")


class SourceType(Enum):
    """Ledger a line item was read from."""
    ESTIMATE = "estimate"
    QUOTE = "quote"
    CHANGE_ORDER = "change_order"


class CostCategory(Enum):
    """Shared category taxonomy for line items and expenses."""
    LABOR = "labor"
    SUBCONTRACTOR = "subcontractor"
    MATERIALS = "materials"
    EQUIPMENT = "equipment"
    PERMITS = "permits"
    MANAGEMENT = "management"
    TOOLS = "tools"
    SOFTWARE = "software"
    VEHICLE_MAINTENANCE = "vehicle_maintenance"
    GAS = "gas"
    MEALS = "meals"
    OFFICE_EXPENSES = "office_expenses"
    VEHICLE_EXPENSES = "vehicle_expenses"
    OTHER = "other"


class AllocationStatus(Enum):
    """How much of a line item's baseline is covered by allocations."""
    NONE = "none"
    PARTIAL = "partial"
    FULL = "full"


@dataclass(frozen=True)
class LineItem:
    """
    Normalized line item.

    Attributes:
        id: Line item identifier from its source ledger
        source_type: estimate, quote or change_order
        source_id: Parent estimate / quote / change order id
        project_id: Owning project
        category: Cost category
        description: Free-text description
        baseline_cost: Cost figure the item was priced at
        allocated_amount: Derived sum of allocations (never negative)
        payee_name: Vendor for quotes and change orders
        change_order_number: Change order number, change-order items only
        change_order_status: Change order status, change-order items only
        estimate_line_item_id: Estimate item a quote line references
        change_order_line_item_id: Change-order item a quote line references
    """

    id: str
    source_type: SourceType
    source_id: str
    project_id: str
    category: CostCategory
    description: str = ""
    baseline_cost: Decimal = ZERO
    allocated_amount: Decimal = ZERO
    payee_name: Optional[str] = None
    change_order_number: Optional[str] = None
    change_order_status: Optional[str] = None
    estimate_line_item_id: Optional[str] = None
    change_order_line_item_id: Optional[str] = None

    def __post_init__(self):
        """Validate allocated amount is non-negative."""
        if self.allocated_amount < 0:
            raise ValueError("Line item allocated amount cannot be negative")

    @property
    def is_budget_item(self) -> bool:
        """Estimate and change-order items receive allocations directly."""
        return self.source_type in (SourceType.ESTIMATE, SourceType.CHANGE_ORDER)

    @property
    def referenced_budget_item_id(self) -> Optional[str]:
        """Budget item a quote line stands in for (estimate reference first)."""
        return self.estimate_line_item_id or self.change_order_line_item_id

    @property
    def remaining_balance(self) -> Decimal:
        """Baseline not yet covered by allocations, floored at zero."""
        return max(ZERO, self.baseline_cost - self.allocated_amount)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            'id': self.id,
            'source_type': self.source_type.value,
            'source_id': self.source_id,
            'project_id': self.project_id,
            'category': self.category.value,
            'description': self.description,
            'baseline_cost': float(self.baseline_cost),
            'allocated_amount': float(self.allocated_amount),
            'remaining_balance': float(self.remaining_balance),
            'payee_name': self.payee_name,
            'change_order_number': self.change_order_number,
            'change_order_status': self.change_order_status,
        }
