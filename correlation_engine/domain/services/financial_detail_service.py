"""
Financial Detail Service - project-level estimate / quote / actual view.

Runs the pure pipeline over one project's ledger snapshot:
    normalize → resolve → aggregate → rollup

Ensures the conservation invariant:
- CategorySummary.actual_cost = Σ(LineItem.allocated_amount | category)
"""
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from ...infrastructure.repositories import CorrelationRepository, ExpenseRepository
from ...modules.aggregator import AggregationResult, aggregate
from ...modules.normalizer import normalize_snapshot
from ...modules.resolver import ResolutionWarning, check_split_totals, resolve_snapshot
from ...modules.rollup import MarginFigures, VarianceFigures, compute_margin, compute_variance
from ...modules.suggestion_engine import SuggestionResult, compute_all_suggestions
from ..entities import (
    AllocationSummary,
    CategorySummary,
    LedgerSnapshot,
    LineItem,
)
from ..exceptions import InvariantViolationError
from ..money import ZERO

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProjectFinancialDetail:
    """Everything the dashboards need about one project's spend."""
    project_id: str
    categories: Tuple[CategorySummary, ...]
    allocation_summary: AllocationSummary
    variance: VarianceFigures
    line_items: Tuple[LineItem, ...] = ()
    warnings: Tuple[ResolutionWarning, ...] = ()
    margin: Optional[MarginFigures] = None

    def to_dict(self) -> Dict:
        return {
            'project_id': self.project_id,
            'categories': [c.to_dict() for c in self.categories],
            'allocation_summary': self.allocation_summary.to_dict(),
            'variance': self.variance.to_dict(),
            'margin': self.margin.to_dict() if self.margin else None,
            'warnings': [w.to_dict() for w in self.warnings],
        }


def verify_conservation(result: AggregationResult) -> None:
    """
    Check that every category's actual cost equals the allocations of all
    returned line items in it, quote items included.

    Raises:
        InvariantViolationError
    """
    allocated_by_category: Dict[str, Decimal] = {}
    for item in result.line_items:
        key = item.category.value
        allocated_by_category[key] = allocated_by_category.get(key, ZERO) + item.allocated_amount

    actual_by_category = {s.category.value: s.actual_cost for s in result.categories}
    for key in sorted(set(allocated_by_category) | set(actual_by_category)):
        expected = allocated_by_category.get(key, ZERO)
        actual = actual_by_category.get(key, ZERO)
        if actual != expected:
            raise InvariantViolationError(f"category_actual_cost[{key}]", str(expected), str(actual))


class FinancialDetailService:
    """
    Service building project financial detail.

    The session is optional: without it the snapshot is used as given; with
    it the spend side (expenses, splits, correlation links) is replaced by
    the persisted rows, so allocations made through AllocationService show
    up on the next read.
    """

    def __init__(self, session: Optional[Session] = None):
        self.session = session
        if session is not None:
            self.expense_repo = ExpenseRepository(session)
            self.correlation_repo = CorrelationRepository(session)

    def with_persisted_spend(self, snapshot: LedgerSnapshot) -> LedgerSnapshot:
        """Replace the snapshot's spend ledgers with the persisted rows."""
        if self.session is None:
            return snapshot

        expenses = self.expense_repo.get_by_project(snapshot.project_id)
        splits = self.expense_repo.get_splits_for_project(snapshot.project_id)
        links = self.correlation_repo.get_for_sources(
            [e.id for e in expenses],
            [s.id for s in splits],
        )
        return snapshot.model_copy(update={
            'expenses': [e.to_record() for e in expenses],
            'expense_splits': [s.to_record() for s in splits],
            'correlations': [link.to_record() for link in links],
        })

    def aggregate_snapshot(self, snapshot: LedgerSnapshot) -> Tuple[AggregationResult, List[ResolutionWarning]]:
        """Normalize, resolve and aggregate one snapshot."""
        line_items = normalize_snapshot(snapshot)
        resolution = resolve_snapshot(snapshot, line_items)
        warnings = list(resolution.warnings)
        warnings.extend(check_split_totals(snapshot.expenses, snapshot.expense_splits))

        result = aggregate(line_items, resolution.allocations, snapshot.expenses)
        verify_conservation(result)
        return result, warnings

    def build(
        self,
        snapshot: LedgerSnapshot,
        contract_amount: Optional[Decimal] = None,
    ) -> ProjectFinancialDetail:
        """
        Build the financial detail of one project.

        Args:
            snapshot: All ledgers of the project
            contract_amount: Contract value, for margin projection

        Returns:
            ProjectFinancialDetail
        """
        snapshot = self.with_persisted_spend(snapshot)
        result, warnings = self.aggregate_snapshot(snapshot)
        variance = compute_variance(result.categories)

        summary = result.allocation_summary
        logger.info(
            f"Project {snapshot.project_id}: {len(result.categories)} categories, "
            f"{summary.allocated_count}/{summary.total_external_line_items} external items allocated, "
            f"{len(warnings)} warnings"
        )

        return ProjectFinancialDetail(
            project_id=snapshot.project_id,
            categories=result.categories,
            allocation_summary=summary,
            variance=variance,
            line_items=result.line_items,
            warnings=tuple(warnings),
            margin=compute_margin(variance, contract_amount),
        )

    def suggest_for_unallocated(self, snapshot: LedgerSnapshot) -> Dict[str, Optional[SuggestionResult]]:
        """
        Suggest line items for every expense of the project with no link.

        An expense counts as linked when it, or any of its splits, has a
        correlation.
        """
        snapshot = self.with_persisted_spend(snapshot)
        result, _ = self.aggregate_snapshot(snapshot)

        split_parents = {s.id: s.expense_id for s in snapshot.expense_splits}
        linked = set()
        for link in snapshot.correlations:
            if link.expense_id:
                linked.add(link.expense_id)
            if link.expense_split_id in split_parents:
                linked.add(split_parents[link.expense_split_id])

        unallocated = [
            e for e in snapshot.expenses
            if e.id not in linked and e.project_id == snapshot.project_id
        ]
        logger.debug(f"{len(unallocated)} unallocated expenses in project {snapshot.project_id}")
        return compute_all_suggestions(unallocated, result.line_items)
