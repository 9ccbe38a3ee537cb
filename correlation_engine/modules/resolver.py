"""
Correlation Resolver for the Correlation Engine.

Resolves every correlation link to the concrete budget line item(s) it pays
for and the exact amount behind it:

1. Direct estimate / change-order references are their own target.
2. Quote references hop through the line items of accepted quotes. Each
   reference field (estimate, change order) is an independent path; when a
   path has several candidates the first one wins (see pick_quote_candidate).
3. Split links carry the split amount; whole-expense links carry the expense
   amount. A whole-expense link on an expense that has splits is skipped so
   parent and split money never coexist. Links on splits assigned to another
   project belong to that project's pass and are skipped silently.
4. Allocations are folded on (target, source kind, source id): the same money
   reaching the same target through several links counts once.

Links that cannot be resolved are dropped with a ResolutionWarning; the pass
never aborts.
"""
import logging
from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Dict, Iterable, List, Optional, Set, Tuple

from ..config import get_config
from ..domain.entities import (
    AllocationSourceKind,
    CorrelationLinkRecord,
    ExpenseRecord,
    ExpenseSplitRecord,
    LedgerSnapshot,
    LineItem,
    QuoteLineItemRecord,
    QuoteRecord,
    ResolutionPath,
    ResolvedAllocation,
)
from ..domain.money import ZERO
from .normalizer import compute_quote_line_cost

logger = logging.getLogger(__name__)


# =============================================================================
# Data Classes
# =============================================================================

class WarningKind(Enum):
    """Why a link (or part of one) was dropped or flagged."""
    ORPHANED_TARGET = "orphaned_target"
    MISSING_SOURCE = "missing_source"
    UNRESOLVED_QUOTE = "unresolved_quote"
    EMPTY_LINK = "empty_link"
    AMBIGUOUS_QUOTE = "ambiguous_quote"
    SUPERSEDED_BY_SPLITS = "superseded_by_splits"
    SPLIT_TOTAL_MISMATCH = "split_total_mismatch"


@dataclass(frozen=True)
class ResolutionWarning:
    """A recoverable problem found while resolving links."""
    kind: WarningKind
    message: str
    link_id: Optional[str] = None
    reference_id: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            'kind': self.kind.value,
            'message': self.message,
            'link_id': self.link_id,
            'reference_id': self.reference_id,
        }


@dataclass(frozen=True)
class QuoteTarget:
    """A budget line item reachable from a quote through one of its lines."""
    line_item_id: str
    path: ResolutionPath
    quote_line_item_id: str
    cost: Decimal


@dataclass(frozen=True)
class ResolutionResult:
    """Immutable output of one resolution pass."""
    allocations: Tuple[ResolvedAllocation, ...] = ()
    warnings: Tuple[ResolutionWarning, ...] = ()

    def by_target(self) -> Dict[str, List[ResolvedAllocation]]:
        """Group allocations by target line item, preserving order."""
        grouped: Dict[str, List[ResolvedAllocation]] = defaultdict(list)
        for allocation in self.allocations:
            grouped[allocation.target_line_item_id].append(allocation)
        return dict(grouped)

    def total_for(self, line_item_id: str) -> Decimal:
        """Sum of allocation amounts for one target."""
        return sum(
            (a.amount for a in self.allocations if a.target_line_item_id == line_item_id),
            ZERO,
        )

    def warnings_of(self, kind: WarningKind) -> List[ResolutionWarning]:
        return [w for w in self.warnings if w.kind == kind]


# Quote id -> path -> candidate targets in quote-line-item order
QuoteTargetMap = Dict[str, Dict[ResolutionPath, List[QuoteTarget]]]


# =============================================================================
# Quote Hop
# =============================================================================

def build_quote_target_map(quote_line_items: Iterable[QuoteLineItemRecord]) -> QuoteTargetMap:
    """
    Build quote id -> {path -> [QuoteTarget]} from quote line items.

    A quote line carrying both an estimate and a change-order reference
    contributes one candidate to each path.
    """
    targets: QuoteTargetMap = {}
    for qli in quote_line_items:
        cost = compute_quote_line_cost(qli)
        paths = targets.setdefault(qli.quote_id, {})
        if qli.estimate_line_item_id:
            paths.setdefault(ResolutionPath.QUOTE_TO_ESTIMATE, []).append(QuoteTarget(
                line_item_id=qli.estimate_line_item_id,
                path=ResolutionPath.QUOTE_TO_ESTIMATE,
                quote_line_item_id=qli.id,
                cost=cost,
            ))
        if qli.change_order_line_item_id:
            paths.setdefault(ResolutionPath.QUOTE_TO_CHANGE_ORDER, []).append(QuoteTarget(
                line_item_id=qli.change_order_line_item_id,
                path=ResolutionPath.QUOTE_TO_CHANGE_ORDER,
                quote_line_item_id=qli.id,
                cost=cost,
            ))
    return targets


def accepted_quote_line_items(
    quotes: Iterable[QuoteRecord],
    quote_line_items: Iterable[QuoteLineItemRecord],
    accepted_statuses: Optional[List[str]] = None,
) -> List[QuoteLineItemRecord]:
    """Quote line items whose parent quote is accepted; only these are hop candidates."""
    if accepted_statuses is None:
        accepted_statuses = get_config().accepted_quote_statuses
    accepted_ids = {q.id for q in quotes if q.status in accepted_statuses}
    return [qli for qli in quote_line_items if qli.quote_id in accepted_ids]


def pick_quote_candidate(
candidates: List[QuoteTarget]) -> Tuple[Optional[QuoteTarget], bool]:
    """
    Choose the target for one quote path.

    First-match heuristic: a quote whose lines reference several distinct
    budget items on the same path cannot be split automatically, so the
    first candidate in quote-line-item order takes the whole amount. This is
    a known limitation that can misattribute spend, not a correctness
    guarantee.

    Returns:
        (chosen candidate or None, whether the choice was ambiguous)
    """
    if not candidates:
        return None, False
    distinct = {c.line_item_id for c in candidates}
    return candidates[0], len(distinct) > 1


def resolve_link_targets(
    link: CorrelationLinkRecord,
    quote_targets: QuoteTargetMap,
) -> Tuple[List[Tuple[str, ResolutionPath]], List[ResolutionWarning]]:
    """
    Resolve the target line item ids of one link (before existence checks).

    Returns:
        (list of (line_item_id, path), warnings)
    """
    targets: List[Tuple[str, ResolutionPath]] = []
    warnings: List[ResolutionWarning] = []

    if link.estimate_line_item_id:
        targets.append((link.estimate_line_item_id, ResolutionPath.DIRECT_ESTIMATE))

    if link.change_order_line_item_id:
        targets.append((link.change_order_line_item_id, ResolutionPath.DIRECT_CHANGE_ORDER))

    if link.quote_id:
        paths = quote_targets.get(link.quote_id, {})
        resolved_any = False
        for path in (ResolutionPath.QUOTE_TO_ESTIMATE, ResolutionPath.QUOTE_TO_CHANGE_ORDER):
            chosen, ambiguous = pick_quote_candidate(paths.get(path, []))
            if chosen is None:
                continue
            resolved_any = True
            targets.append((chosen.line_item_id, path))
            if ambiguous:
                warnings.append(ResolutionWarning(
                    kind=WarningKind.AMBIGUOUS_QUOTE,
                    message=(
                        f"Quote {link.quote_id} references several line items on "
                        f"{path.value}; attributed to first match {chosen.line_item_id}"
                    ),
                    link_id=link.id,
                    reference_id=link.quote_id,
                ))
        if not resolved_any:
            warnings.append(ResolutionWarning(
                kind=WarningKind.UNRESOLVED_QUOTE,
                message=f"Quote {link.quote_id} has no line items referencing an estimate or change order",
                link_id=link.id,
                reference_id=link.quote_id,
            ))

    if not targets and not link.quote_id:
        warnings.append(ResolutionWarning(
            kind=WarningKind.EMPTY_LINK,
            message=f"Correlation {link.id} has no target",
            link_id=link.id,
        ))

    return targets, warnings


# =============================================================================
# Amount Resolution
# =============================================================================

@dataclass(frozen=True)
class _Source:
    kind: AllocationSourceKind
    source_id: str
    expense_id: str
    amount: Decimal


def resolve_link_source(
    link: CorrelationLinkRecord,
    expenses_by_id: Dict[str, ExpenseRecord],
    splits_by_id: Dict[str, ExpenseSplitRecord],
    split_parent_ids: Set[str],
) -> Tuple[Optional[_Source], Optional[ResolutionWarning]]:
    """
    Resolve the money behind one link: the split amount for split links,
    otherwise the whole expense amount. Never both.
    """
    if link.expense_split_id:
        split = splits_by_id.get(link.expense_split_id)
        if split is None:
            return None, ResolutionWarning(
                kind=WarningKind.MISSING_SOURCE,
                message=f"Expense split {link.expense_split_id} not found",
                link_id=link.id,
                reference_id=link.expense_split_id,
            )
        return _Source(
            kind=AllocationSourceKind.SPLIT,
            source_id=split.id,
            expense_id=split.expense_id,
            amount=split.split_amount if split.split_amount is not None else ZERO,
        ), None

    if not link.expense_id:
        return None, ResolutionWarning(
            kind=WarningKind.MISSING_SOURCE,
            message=f"Correlation {link.id} references neither an expense nor a split",
            link_id=link.id,
        )

    if link.expense_id in split_parent_ids:
        return None, ResolutionWarning(
            kind=WarningKind.SUPERSEDED_BY_SPLITS,
            message=f"Expense {link.expense_id} is split; whole-expense correlation ignored",
            link_id=link.id,
            reference_id=link.expense_id,
        )

    expense = expenses_by_id.get(link.expense_id)
    if expense is None:
        return None, ResolutionWarning(
            kind=WarningKind.MISSING_SOURCE,
            message=f"Expense {link.expense_id} not found",
            link_id=link.id,
            reference_id=link.expense_id,
        )
    return _Source(
        kind=AllocationSourceKind.EXPENSE,
        source_id=expense.id,
        expense_id=expense.id,
        amount=expense.amount if expense.amount is not None else ZERO,
    ), None


def validate_split_total(
    expense_amount: Decimal,
    split_amounts: List[Decimal],
    tolerance: Optional[Decimal] = None,
) -> Optional[str]:
    """
    Check that split amounts sum to the expense total within tolerance.

    Returns:
        None when valid, otherwise an error message
    """
    if tolerance is None:
        tolerance = get_config().split_tolerance
    total = sum(split_amounts, ZERO)
    diff = abs(total - expense_amount)
    if diff > tolerance:
        return (
            f"Split total (${total:,.2f}) must equal expense amount "
            f"(${expense_amount:,.2f}). Difference: ${diff:,.2f}"
        )
    return None


def check_split_totals(
    expenses: Iterable[ExpenseRecord],
    splits: Iterable[ExpenseSplitRecord],
) -> List[ResolutionWarning]:
    """Flag split expenses whose splits do not add back up to the expense."""
    amounts_by_expense: Dict[str, List[Decimal]] = defaultdict(list)
    for split in splits:
        amounts_by_expense[split.expense_id].append(
            split.split_amount if split.split_amount is not None else ZERO
        )

    warnings = []
    for expense in expenses:
        if expense.id not in amounts_by_expense:
            continue
        error = validate_split_total(
            expense.amount if expense.amount is not None else ZERO,
            amounts_by_expense[expense.id],
        )
        if error:
            warnings.append(ResolutionWarning(
                kind=WarningKind.SPLIT_TOTAL_MISMATCH,
                message=f"Expense {expense.id}: {error}",
                reference_id=expense.id,
            ))
    return warnings


# =============================================================================
# Resolution Pass
# =============================================================================

def fold_allocations(candidates: Iterable[ResolvedAllocation]) -> Tuple[ResolvedAllocation, ...]:
    """
    Deduplicate allocations on (target, source kind, source id).

    The first allocation seen for a key is kept; repeats are no-ops.
    """
    folded: Dict[Tuple[str, str, str], ResolvedAllocation] = {}
    for allocation in candidates:
        folded.setdefault(allocation.dedup_key, allocation)
    return tuple(folded.values())


def resolve_correlations(
    links: Iterable[CorrelationLinkRecord],
    quote_line_items: Iterable[QuoteLineItemRecord],
    budget_line_item_ids: Iterable[str],
    expenses: Iterable[ExpenseRecord],
    splits: Iterable[ExpenseSplitRecord],
    project_id: Optional[str] = None,
) -> ResolutionResult:
    """
    Resolve all correlation links of a project.

    Args:
        links: Correlation link rows
        quote_line_items: Quote line items used for the quote hop
        budget_line_item_ids: Ids of existing estimate and change-order line items
        expenses: Expenses referenced by the links
        splits: Expense splits referenced by the links
        project_id: Project being resolved; links on splits assigned to
            another project are skipped without a warning

    Returns:
        ResolutionResult with deduplicated allocations and warnings
    """
    quote_targets = build_quote_target_map(quote_line_items)
    known_targets = set(budget_line_item_ids)
    expenses_by_id = {e.id: e for e in expenses}
    splits = list(splits)
    splits_by_id = {s.id: s for s in splits}
    split_parent_ids = {s.expense_id for s in splits}

    candidates: List[ResolvedAllocation] = []
    warnings: List[ResolutionWarning] = []
    link_count = 0
    foreign_count = 0

    for link in links:
        link_count += 1
        split = splits_by_id.get(link.expense_split_id) if link.expense_split_id else None
        if project_id and split is not None and split.project_id and split.project_id != project_id:
            logger.debug(f"Correlation {link.id} pays for split {split.id} of project {split.project_id}; skipped")
            foreign_count += 1
            continue

        targets, target_warnings = resolve_link_targets(link, quote_targets)
        warnings.extend(target_warnings)
        if not targets:
            continue

        source, source_warning = resolve_link_source(
            link, expenses_by_id, splits_by_id, split_parent_ids
        )
        if source_warning:
            warnings.append(source_warning)
        if source is None:
            continue

        for target_id, path in targets:
            if target_id not in known_targets:
                warnings.append(ResolutionWarning(
                    kind=WarningKind.ORPHANED_TARGET,
                    message=f"Line item {target_id} not found; correlation {link.id} skipped",
                    link_id=link.id,
                    reference_id=target_id,
                ))
                continue
            candidates.append(ResolvedAllocation(
                target_line_item_id=target_id,
                source_kind=source.kind,
                source_id=source.source_id,
                expense_id=source.expense_id,
                amount=source.amount,
                link_id=link.id,
                path=path,
            ))

    allocations = fold_allocations(candidates)

    for warning in warnings:
        if warning.kind == WarningKind.AMBIGUOUS_QUOTE:
            logger.info(warning.message)
        else:
            logger.warning(warning.message)

    logger.debug(
        f"Resolved {link_count} correlations into {len(allocations)} allocations "
        f"({len(candidates) - len(allocations)} duplicates folded, {foreign_count} other-project splits, "
        f"{len(warnings)} warnings)"
    )

    return ResolutionResult(allocations=allocations, warnings=tuple(warnings))


def resolve_snapshot(snapshot: LedgerSnapshot, line_items: Iterable[LineItem]) -> ResolutionResult:
    """Resolve a snapshot's correlations against its normalized line items."""
    budget_ids = [li.id for li in line_items if li.is_budget_item]
    return resolve_correlations(
        snapshot.correlations,
        accepted_quote_line_items(snapshot.quotes, snapshot.quote_line_items),
        budget_ids,
        snapshot.expenses,
        snapshot.expense_splits,
        project_id=snapshot.project_id,
    )
