"""
Domain Entities - Core immutable business objects.
"""

from .line_item import LineItem, SourceType, CostCategory, AllocationStatus
from .allocation import (
    ResolvedAllocation, AllocationSourceKind, ResolutionPath,
    AllocatedExpense, LineItemDetail, CategorySummary,
    LineItemAllocationDetail, AllocationSummary,
)
from .ledger import (
    EstimateLineItemRecord, QuoteRecord, QuoteLineItemRecord,
    ChangeOrderRecord, ChangeOrderLineItemRecord,
    ExpenseRecord, ExpenseSplitRecord, CorrelationLinkRecord,
    LedgerSnapshot,
)

__all__ = [
    'LineItem', 'SourceType', 'CostCategory', 'AllocationStatus',
    'ResolvedAllocation', 'AllocationSourceKind', 'ResolutionPath',
    'AllocatedExpense', 'LineItemDetail', 'CategorySummary',
    'LineItemAllocationDetail', 'AllocationSummary',
    'EstimateLineItemRecord', 'QuoteRecord', 'QuoteLineItemRecord',
    'ChangeOrderRecord', 'ChangeOrderLineItemRecord',
    'ExpenseRecord', 'ExpenseSplitRecord', 'CorrelationLinkRecord',
    'LedgerSnapshot',
]
