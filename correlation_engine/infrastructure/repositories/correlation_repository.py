"""
Correlation Repository - Data access layer for expense ↔ line item links.
"""
from typing import Iterable, List, Optional
from sqlalchemy import or_
from sqlalchemy.orm import Session

from ...models import AllocationChangeLog, ExpenseLineItemCorrelation
from .base_repository import BaseRepository


class CorrelationRepository(BaseRepository[ExpenseLineItemCorrelation]):
    """
    Repository for correlation links.

    A link points at exactly one target column; whole-expense links leave
    expense_split_id empty.
    """

    def __init__(self, session: Session):
        super().__init__(session, ExpenseLineItemCorrelation)

    def get_by_expense(self, expense_id: str) -> List[ExpenseLineItemCorrelation]:
        """Get all links of an expense, whole-expense and split links alike."""
        return self.session.query(ExpenseLineItemCorrelation).filter(
            ExpenseLineItemCorrelation.expense_id == expense_id
        ).order_by(ExpenseLineItemCorrelation.created_at).all()

    def get_for_sources(
        self,
        expense_ids: Iterable[str],
        split_ids: Iterable[str] = (),
    ) -> List[ExpenseLineItemCorrelation]:
        """
        Get links referencing any of the given expenses or splits.

        Args:
            expense_ids: Expense identifiers
            split_ids: Split identifiers

        Returns:
            Links in creation order
        """
        expense_ids = list(expense_ids)
        split_ids = list(split_ids)
        if not expense_ids and not split_ids:
            return []
        return self.session.query(ExpenseLineItemCorrelation).filter(
            or_(
                ExpenseLineItemCorrelation.expense_id.in_(expense_ids),
                ExpenseLineItemCorrelation.expense_split_id.in_(split_ids),
            )
        ).order_by(ExpenseLineItemCorrelation.created_at, ExpenseLineItemCorrelation.id).all()

    def find_duplicate(
        self,
        expense_id: str,
        expense_split_id: Optional[str],
        estimate_line_item_id: Optional[str] = None,
        change_order_line_item_id: Optional[str] = None,
        quote_id: Optional[str] = None,
    ) -> Optional[ExpenseLineItemCorrelation]:
        """Find an existing link of the same source to the same target."""
        query = self.session.query(ExpenseLineItemCorrelation).filter(
            ExpenseLineItemCorrelation.expense_id == expense_id
        )
        if expense_split_id:
            query = query.filter(ExpenseLineItemCorrelation.expense_split_id == expense_split_id)
        else:
            query = query.filter(ExpenseLineItemCorrelation.expense_split_id.is_(None))

        for column, value in (
            (ExpenseLineItemCorrelation.estimate_line_item_id, estimate_line_item_id),
            (ExpenseLineItemCorrelation.change_order_line_item_id, change_order_line_item_id),
            (ExpenseLineItemCorrelation.quote_id, quote_id),
        ):
            query = query.filter(column == value) if value else query.filter(column.is_(None))
        return query.first()

    def count_whole_expense_links(self, expense_id: str, exclude_id: Optional[str] = None) -> int:
        """Count links allocating the whole expense (no split)."""
        query = self.session.query(ExpenseLineItemCorrelation).filter(
            ExpenseLineItemCorrelation.expense_id == expense_id,
            ExpenseLineItemCorrelation.expense_split_id.is_(None),
        )
        if exclude_id:
            query = query.filter(ExpenseLineItemCorrelation.id != exclude_id)
        return query.count()

    def log_change(self, **fields) -> AllocationChangeLog:
        """Append an audit row; committed with the surrounding transaction."""
        entry = AllocationChangeLog(**fields)
        self.session.add(entry)
        return entry

    def get_change_log(self, expense_id: Optional[str] = None) -> List[AllocationChangeLog]:
        query = self.session.query(AllocationChangeLog)
        if expense_id:
            query = query.filter(AllocationChangeLog.expense_id == expense_id)
        return query.order_by(AllocationChangeLog.id).all()
