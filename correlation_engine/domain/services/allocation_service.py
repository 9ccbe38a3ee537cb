"""
Allocation Service - create, remove and move expense allocations.

The correlation-link table is the only mutable shared resource of the
engine. Each allocation decision is one transaction: the link row, the
expense's planned flag and the audit row commit together or not at all.
Aggregation picks the change up on the next read.
"""
import logging
from contextlib import contextmanager
from dataclasses import replace
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from ...config import get_config
from ...models import CorrelationType, ExpenseLineItemCorrelation
from ...infrastructure.repositories import CorrelationRepository, ExpenseRepository
from ...modules.suggestion_engine import suggest_line_item
from ..entities import ExpenseRecord, LineItem, SourceType
from ..exceptions import (
    CorrelationNotFoundError,
    CrossProjectSplitError,
    DuplicateAllocationError,
    ExpenseNotFoundError,
    InvalidAllocationTargetError,
    SplitNotFoundError,
)
from ..money import ZERO

logger = logging.getLogger(__name__)


def target_columns(line_item: LineItem) -> Dict[str, Optional[str]]:
    """
    Correlation target columns for a line item.

    Quote-sourced items are linked through their quote; the resolver hops
    back to the referenced estimate / change-order item.
    """
    columns = {
        'estimate_line_item_id': None,
        'change_order_line_item_id': None,
        'quote_id': None,
    }
    if line_item.source_type == SourceType.ESTIMATE:
        columns['estimate_line_item_id'] = line_item.id
    elif line_item.source_type == SourceType.CHANGE_ORDER:
        columns['change_order_line_item_id'] = line_item.id
    else:
        columns['quote_id'] = line_item.source_id
    return columns


def _charge(line_items: List[LineItem], line_item: LineItem, amount: Decimal) -> List[LineItem]:
    """
    Copy of line_items with amount added to the allocation line_item draws on:
    its referenced budget item for a quote line, otherwise itself.
    """
    budget_ids = {li.id for li in line_items if li.is_budget_item}
    target_id = line_item.id
    if not line_item.is_budget_item and line_item.referenced_budget_item_id in budget_ids:
        target_id = line_item.referenced_budget_item_id
    return [
        replace(li, allocated_amount=li.allocated_amount + amount) if li.id == target_id else li
        for li in line_items
    ]


class AllocationService:
    """
    Service for allocation mutations over a SQLAlchemy session.

    Rules:
    - A link targets exactly one of estimate item / quote / change-order item
    - The same expense or split is never linked to the same target twice
    - A split is only allocated within its own project
    - Whole-expense links mark the expense planned
    """

    def __init__(self, session: Session, changed_by: str = "user"):
        self.session = session
        self.changed_by = changed_by
        self.expense_repo = ExpenseRepository(session)
        self.correlation_repo = CorrelationRepository(session)

    @contextmanager
    def _transaction(self, action: str):
        try:
            yield
            self.session.commit()
        except Exception as e:
            self.session.rollback()
            logger.error(f"{action} failed, rolled back: {e}")
            raise

    # =========================================================================
    # Mutations
    # =========================================================================

    def allocate(
        self,
        expense_id: str,
        line_item: LineItem,
        split_id: Optional[str] = None,
        auto: bool = False,
        confidence: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> ExpenseLineItemCorrelation:
        """
        Allocate an expense (or one of its splits) to a line item.

        Args:
            expense_id: Expense identifier
            line_item: Target line item
            split_id: Split identifier when allocating part of the expense
            auto: Whether the allocation came from an accepted suggestion
            confidence: Suggestion confidence, for auto allocations
            notes: Free-text notes

        Returns:
            The created correlation link

        Raises:
            ExpenseNotFoundError, SplitNotFoundError, CrossProjectSplitError,
            InvalidAllocationTargetError, DuplicateAllocationError
        """
        with self._transaction("allocate"):
            link = self._create_link(
                expense_id,
                line_item,
                split_id=split_id,
                correlation_type=CorrelationType.AUTO_MATCH if auto else CorrelationType.MANUAL,
                auto=auto,
                confidence=confidence,
                notes=notes,
            )
            self._log(
                "allocate",
                link,
                line_item,
                confidence=confidence,
                change_reason="auto-allocated from suggestion" if auto else None,
            )

        logger.info(
            f"Allocated {'split ' + split_id if split_id else 'expense ' + expense_id} "
            f"to {line_item.source_type.value} line item {line_item.id}"
        )
        return link

    def deallocate(self, link_id: str) -> None:
        """
        Remove an allocation.

        The expense is unmarked planned once no whole-expense link remains.

        Raises:
            CorrelationNotFoundError
        """
        with self._transaction("deallocate"):
            link = self.correlation_repo.get_by_id(link_id)
            if link is None:
                raise CorrelationNotFoundError(link_id)
            self._remove_link(link)
            self.correlation_repo.log_change(
                action="deallocate",
                correlation_id=link.id,
                expense_id=link.expense_id,
                expense_split_id=link.expense_split_id,
                line_item_id=link.target_id,
                changed_by=self.changed_by,
            )

        logger.info(f"Deallocated correlation {link_id}")

    def reallocate(
        self,
        link_id: str,
        line_item: LineItem,
        notes: Optional[str] = None,
    ) -> ExpenseLineItemCorrelation:
        """
        Move an allocation to another line item (delete + create, one transaction).

        Raises:
            CorrelationNotFoundError, plus everything allocate() raises
        """
        with self._transaction("reallocate"):
            old = self.correlation_repo.get_by_id(link_id)
            if old is None:
                raise CorrelationNotFoundError(link_id)
            expense_id = old.expense_id
            split_id = old.expense_split_id
            previous_target = old.target_id

            self._remove_link(old)
            self.session.flush()

            link = self._create_link(
                expense_id,
                line_item,
                split_id=split_id,
                correlation_type=CorrelationType.REALLOCATED,
                notes=notes if notes is not None else old.notes,
            )
            self._log("reallocate", link, line_item, previous_line_item_id=previous_target)

        logger.info(f"Reallocated correlation {link_id} from {previous_target} to {line_item.id}")
        return link

    def auto_allocate(
        self,
        expenses: Iterable[ExpenseRecord],
        line_items: Iterable[LineItem],
        min_confidence: Optional[int] = None,
    ) -> List[ExpenseLineItemCorrelation]:
        """
        Accept high-confidence suggestions.

        Each accepted suggestion commits on its own and lowers the chosen
        item's remaining balance for the rest of the batch. Expenses already
        allocated to the suggested item, or split, are skipped.

        Args:
            expenses: Unallocated expenses
            line_items: Normalized line items annotated with allocated amounts
            min_confidence: Override the auto-allocate threshold

        Returns:
            Links created
        """
        if min_confidence is None:
            min_confidence = get_config().auto_allocate_confidence

        line_items = list(line_items)
        items_by_id = {li.id: li for li in line_items}
        created = []

        for expense in expenses:
            suggestion = suggest_line_item(expense, line_items)
            if suggestion is None or suggestion.confidence < min_confidence:
                continue
            chosen = items_by_id[suggestion.line_item_id]
            try:
                created.append(self.allocate(
                    expense.id,
                    chosen,
                    auto=True,
                    confidence=suggestion.confidence,
                ))
            except (DuplicateAllocationError, InvalidAllocationTargetError) as e:
                logger.info(f"Skipping auto-allocation: {e.message}")
                continue
            # later expenses in the batch score against the reduced balance
            line_items = _charge(line_items, chosen, abs(expense.amount or ZERO))

        logger.info(f"Auto-allocated {len(created)} expenses (threshold {min_confidence})")
        return created

    # =========================================================================
    # Internal helpers
    # =========================================================================

    def _create_link(
        self,
        expense_id: str,
        line_item: LineItem,
        split_id: Optional[str] = None,
        correlation_type: str = CorrelationType.MANUAL,
        auto: bool = False,
        confidence: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> ExpenseLineItemCorrelation:
        expense = self.expense_repo.get_by_id(expense_id)
        if expense is None:
            raise ExpenseNotFoundError(expense_id)

        if split_id:
            split = self.expense_repo.get_split(split_id)
            if split is None or split.expense_id != expense_id:
                raise SplitNotFoundError(split_id)
            split_project = split.project_id or expense.project_id
            if split_project != line_item.project_id:
                raise CrossProjectSplitError(split_id, split_project, line_item.project_id)
        else:
            if expense.project_id and expense.project_id != line_item.project_id:
                raise InvalidAllocationTargetError(
                    line_item.id,
                    f"expense '{expense_id}' belongs to project '{expense.project_id}'",
                )
            if expense.splits:
                raise InvalidAllocationTargetError(line_item.id, "expense is split; allocate its splits")

        columns = target_columns(line_item)
        if self.correlation_repo.find_duplicate(expense_id, split_id, **columns):
            raise DuplicateAllocationError(split_id or expense_id, line_item.id)

        link = ExpenseLineItemCorrelation(
            expense_id=expense_id,
            expense_split_id=split_id,
            correlation_type=correlation_type,
            auto_correlated=auto,
            confidence_score=confidence,
            notes=notes,
            **columns,
        )
        self.correlation_repo.add(link)

        if not split_id:
            self.expense_repo.set_planned(expense, True)

        self.session.flush()
        return link

    def _remove_link(self, link: ExpenseLineItemCorrelation) -> None:
        if link.expense_split_id is None and link.expense_id:
            remaining = self.correlation_repo.count_whole_expense_links(link.expense_id, exclude_id=link.id)
            if remaining == 0:
                expense = self.expense_repo.get_by_id(link.expense_id)
                if expense is not None:
                    self.expense_repo.set_planned(expense, False)
        self.correlation_repo.delete(link)

    def _log(
        self,
        action: str,
        link: ExpenseLineItemCorrelation,
        line_item: LineItem,
        confidence: Optional[int] = None,
        previous_line_item_id: Optional[str] = None,
        change_reason: Optional[str] = None,
    ) -> None:
        self.correlation_repo.log_change(
            action=action,
            correlation_id=link.id,
            expense_id=link.expense_id,
            expense_split_id=link.expense_split_id,
            line_item_id=line_item.id,
            source_type=line_item.source_type.value,
            previous_line_item_id=previous_line_item_id,
            confidence_score=confidence,
            change_reason=change_reason,
            changed_by=self.changed_by,
        )
