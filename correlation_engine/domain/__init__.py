"""
Domain Layer - Core business entities and services for cost correlation.

This module contains:
- entities/: Immutable domain objects (LineItem, ResolvedAllocation, summaries, ledger records)
- services/: Domain services (FinancialDetailService, AllocationService)
"""

from .entities.line_item import LineItem, SourceType, CostCategory, AllocationStatus
from .entities.allocation import ResolvedAllocation, CategorySummary, AllocationSummary
from .entities.ledger import LedgerSnapshot

__all__ = [
    'LineItem', 'SourceType', 'CostCategory', 'AllocationStatus',
    'ResolvedAllocation', 'CategorySummary', 'AllocationSummary',
    'LedgerSnapshot',
]
