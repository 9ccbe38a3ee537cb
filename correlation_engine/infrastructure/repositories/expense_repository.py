"""
Expense Repository - Data access layer for expenses and their splits.
"""
from typing import List, Optional
from sqlalchemy import or_
from sqlalchemy.orm import Session

from ...models import Expense, ExpenseSplit
from .base_repository import BaseRepository


class ExpenseRepository(BaseRepository[Expense]):
    """
    Repository for Expense entities.

    Splits are reached through this repository as well: a split has no
    meaning without its parent expense.
    """

    def __init__(self, session: Session):
        super().__init__(session, Expense)

    def get_by_project(self, project_id: str) -> List[Expense]:
        """
        Get all expenses of a project, newest first.

        Args:
            project_id: Project identifier

        Returns:
            List of expenses
        """
        return self.session.query(Expense).filter(
            Expense.project_id == project_id
        ).order_by(Expense.expense_date.desc(), Expense.id).all()

    def get_split(self, split_id: str) -> Optional[ExpenseSplit]:
        return self.session.get(ExpenseSplit, split_id)

    def get_splits(self, expense_id: str) -> List[ExpenseSplit]:
        """Get all splits of one expense."""
        return self.session.query(ExpenseSplit).filter(
            ExpenseSplit.expense_id == expense_id
        ).order_by(ExpenseSplit.id).all()

    def get_splits_for_project(self, project_id: str) -> List[ExpenseSplit]:
        """
        Get splits assigned to a project, plus every split of the project's
        own expenses.
        """
        project_expense_ids = self.session.query(Expense.id).filter(
            Expense.project_id == project_id
        )
        return self.session.query(ExpenseSplit).filter(
            or_(
                ExpenseSplit.project_id == project_id,
                ExpenseSplit.expense_id.in_(project_expense_ids),
            )
        ).order_by(ExpenseSplit.id).all()

    def set_planned(self, expense: Expense, planned: bool) -> Expense:
        """Mark or unmark an expense as planned (allocated)."""
        expense.is_planned = planned
        return expense
