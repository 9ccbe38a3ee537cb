"""
Suggestion Engine for Expense → Line Item allocation.

Implements the confidence scoring algorithm with configurable point weights
from YAML:
- Category crosswalk match (default 50 points)
- Payee match (default up to 30 points)
- Amount proximity to remaining balance (default up to 15 points)
- Description keyword overlap (default 5 points)

Ranking is category match first, then source priority
(quote > change order > estimate), then confidence, then description and id.

Confidence bands (configurable):
- High: ≥ 75 (eligible for auto-allocation)
- Medium: 50 – 74 (show suggestion)
- Low: < 50 (no suggestion, manual required)

Configuration is loaded from correlation_engine_config.yaml via
correlation_engine.config.
"""
import logging
import re
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Set, Tuple

from rapidfuzz import fuzz

from ..config import get_config
from ..domain.entities import CostCategory, ExpenseRecord, LineItem
from ..domain.money import ZERO
from .normalizer import normalize_category

logger = logging.getLogger(__name__)


# =============================================================================
# Data Classes
# =============================================================================

@dataclass(frozen=True)
class ScoredCandidate:
    """A line item candidate with its score breakdown."""
    line_item_id: str
    source_type: str
    category: str
    description: str
    confidence: int
    category_match: bool
    payee_points: int
    amount_points: int
    description_points: int
    confidence_band: str  # 'high', 'medium', 'low'

    def to_dict(self) -> Dict:
        return {
            'line_item_id': self.line_item_id,
            'source_type': self.source_type,
            'category': self.category,
            'description': self.description,
            'confidence': self.confidence,
            'breakdown': {
                'category_match': self.category_match,
                'payee': self.payee_points,
                'amount': self.amount_points,
                'description': self.description_points,
            },
            'confidence_band': self.confidence_band,
        }


@dataclass(frozen=True)
class SuggestionResult:
    """Best candidate for one expense plus the full ranking behind it."""
    expense_id: str
    line_item_id: str
    confidence: int
    confidence_band: str
    ranking: Tuple[ScoredCandidate, ...] = field(default_factory=tuple)

    @property
    def is_auto_allocatable(self) -> bool:
        return self.confidence >= get_config().auto_allocate_confidence

    def to_dict(self) -> Dict:
        return {
            'expense_id': self.expense_id,
            'line_item_id': self.line_item_id,
            'confidence': self.confidence,
            'confidence_band': self.confidence_band,
        }


# =============================================================================
# Normalization Functions
# =============================================================================

def normalize_vendor(vendor: Optional[str]) -> str:
    """
    Normalize payee name for consistent matching.
    Removes common suffixes, lowercases, strips whitespace.
    """
    if not vendor or not isinstance(vendor, str):
        return ''

    normalized = vendor.lower().strip()

    suffixes = [
        ' incorporated', ' inc', ' llc', ' corp', ' corporation',
        ' co', ' ltd', ' limited', ' company', ' enterprises',
        ' services', ' group', '.', ','
    ]
    for suffix in suffixes:
        if normalized.endswith(suffix):
            normalized = normalized[:-len(suffix)]

    normalized = re.sub(r'\s+', ' ', normalized).strip()

    return normalized


def normalize_text(text: Optional[str]) -> str:
    """Normalize text for keyword and fuzzy matching."""
    if not text or not isinstance(text, str):
        return ''

    text = text.lower()
    text = re.sub(r'[^\w\s]', ' ', text)
    text = re.sub(r'\s+', ' ', text).strip()

    return text


def extract_keywords(
    text: Optional[str],
    min_length: Optional[int] = None,
    stopwords: Optional[Iterable[str]] = None,
) -> Set[str]:
    """Significant words of a description."""
    config = get_config()
    if min_length is None:
        min_length = config.min_keyword_length
    if stopwords is None:
        stopwords = config.stopwords
    ignored = set(stopwords)

    return {
        word for word in normalize_text(text).split()
        if len(word) >= min_length and word not in ignored
    }


# =============================================================================
# Scoring Functions
# =============================================================================

def compute_category_match(expense_category: CostCategory, item_category: CostCategory) -> bool:
    """True when the crosswalk maps the expense category onto the item's."""
    return item_category.value in get_config().get_matching_categories(expense_category.value)


def compute_payee_match(expense_payee: Optional[str], item_payee: Optional[str]) -> float:
    """
    Compute payee match score from 0.0 to 1.0.

    Case-insensitive substring in either direction is a full match; otherwise
    token_set_ratio of the normalized names is bucketed by the configured tiers.
    """
    if not expense_payee or not item_payee:
        return 0.0

    a = expense_payee.lower().strip()
    b = item_payee.lower().strip()
    if not a or not b:
        return 0.0
    if a in b or b in a:
        return 1.0

    a_norm = normalize_vendor(expense_payee)
    b_norm = normalize_vendor(item_payee)
    if not a_norm or not b_norm:
        return 0.0

    ratio = fuzz.token_set_ratio(a_norm, b_norm)
    for tier in get_config().payee_tiers:
        if ratio >= tier["min_ratio"]:
            return float(tier["score"])
    return 0.0


def compute_amount_proximity(amount: Optional[Decimal], remaining_balance: Decimal) -> float:
    """
    Compute amount proximity score from 0.0 to 1.0.

    Percent difference is measured against the item's remaining balance;
    an item with nothing left scores 0.
    """
    if amount is None or remaining_balance <= 0:
        return 0.0

    percent_diff = abs(abs(amount) - remaining_balance) / remaining_balance * 100
    for tier in get_config().amount_tiers:
        if percent_diff <= Decimal(str(tier["max_percent_diff"])):
            return float(tier["score"])
    return 0.0


def compute_description_match(expense_description: Optional[str], item_description: Optional[str]) -> float:
    """1.0 when the descriptions share at least one keyword."""
    expense_words = extract_keywords(expense_description)
    if not expense_words:
        return 0.0
    return 1.0 if expense_words & extract_keywords(item_description) else 0.0


def build_allocated_map(line_items: Iterable[LineItem]) -> Dict[str, Decimal]:
    """
    Allocated amount each candidate's remaining balance is measured against.

    Budget items use their own allocation. A quote item holds no allocation
    of its own and is measured against the budget item it references.
    """
    items = list(line_items)
    budget_allocated = {item.id: item.allocated_amount for item in items if item.is_budget_item}
    allocated = {}
    for item in items:
        if item.is_budget_item:
            allocated[item.id] = item.allocated_amount
        else:
            allocated[item.id] = budget_allocated.get(item.referenced_budget_item_id, item.allocated_amount)
    return allocated


def score_candidate(
    expense: ExpenseRecord,
    item: LineItem,
    expense_category: Optional[CostCategory] = None,
    allocated: Optional[Dict[str, Decimal]] = None,
) -> ScoredCandidate:
    """
    Compute the confidence of allocating an expense to one line item.

    confidence = Σ round(weight × component score), capped at 100

    Args:
        allocated: line item id -> allocated amount (see build_allocated_map);
            the item's own allocated_amount when omitted
    """
    config = get_config()
    weights = config.suggestion_weights
    if expense_category is None:
        expense_category = normalize_category(expense.category)

    if allocated is None:
        remaining_balance = item.remaining_balance
    else:
        remaining_balance = max(ZERO, item.baseline_cost - allocated.get(item.id, item.allocated_amount))

    category_match = compute_category_match(expense_category, item.category)
    category_points = weights.get("category_match", 50) if category_match else 0
    payee_points = round(
        weights.get("payee_match", 30) * compute_payee_match(expense.payee_name, item.payee_name)
    )
    amount_points = round(
        weights.get("amount_proximity", 15) * compute_amount_proximity(expense.amount, remaining_balance)
    )
    description_points = round(
        weights.get("description_match", 5) * compute_description_match(expense.description, item.description)
    )

    confidence = min(100, int(category_points + payee_points + amount_points + description_points))

    return ScoredCandidate(
        line_item_id=item.id,
        source_type=item.source_type.value,
        category=item.category.value,
        description=item.description,
        confidence=confidence,
        category_match=category_match,
        payee_points=payee_points,
        amount_points=amount_points,
        description_points=description_points,
        confidence_band=config.get_confidence_band(confidence),
    )


# =============================================================================
# Ranking
# =============================================================================

def _ranking_key(candidate: ScoredCandidate, source_priority: Dict[str, int]):
    return (
        0 if candidate.category_match else 1,
        source_priority.get(candidate.source_type, len(source_priority)),
        -candidate.confidence,
        candidate.description,
        candidate.line_item_id,
    )


def rank_candidates(
    expense: ExpenseRecord,
    line_items: Iterable[LineItem],
    allocated: Optional[Dict[str, Decimal]] = None,
) -> List[ScoredCandidate]:
    """
    Score and rank every line item of the expense's project.

    Items of other projects are never candidates.

    Returns:
        Candidates in ranking order
    """
    line_items = list(line_items)
    if allocated is None:
        allocated = build_allocated_map(line_items)

    expense_category = normalize_category(expense.category)
    scored = [
        score_candidate(expense, item, expense_category, allocated)
        for item in line_items
        if item.project_id == expense.project_id
    ]
    source_priority = get_config().source_priority
    return sorted(scored, key=lambda c: _ranking_key(c, source_priority))


def suggest_line_item(
    expense: ExpenseRecord,
    line_items: Iterable[LineItem],
    min_confidence: Optional[int] = None,
    allocated: Optional[Dict[str, Decimal]] = None,
) -> Optional[SuggestionResult]:
    """
    Suggest the line item an unallocated expense most likely pays for.

    Args:
        expense: Expense to place
        line_items: Normalized line items annotated with allocated amounts
        min_confidence: Override minimum confidence for a suggestion
        allocated: Allocated amount per line item; derived from line_items when omitted

    Returns:
        SuggestionResult, or None when the top candidate scores too low
    """
    if min_confidence is None:
        min_confidence = get_config().min_confidence

    ranking = rank_candidates(expense, line_items, allocated)
    if not ranking:
        return None

    best = ranking[0]
    if best.confidence < min_confidence:
        logger.debug(
            f"No suggestion for expense {expense.id}: best candidate {best.line_item_id} "
            f"scored {best.confidence} < {min_confidence}"
        )
        return None

    return SuggestionResult(
        expense_id=expense.id,
        line_item_id=best.line_item_id,
        confidence=best.confidence,
        confidence_band=best.confidence_band,
        ranking=tuple(ranking),
    )


def compute_all_suggestions(
    expenses: Iterable[ExpenseRecord],
    line_items: Iterable[LineItem],
    min_confidence: Optional[int] = None,
) -> Dict[str, Optional[SuggestionResult]]:
    """
    Compute suggestions for a batch of expenses.

    Returns:
        Dict mapping expense id -> SuggestionResult or None
    """
    line_items = list(line_items)
    allocated = build_allocated_map(line_items)
    results = {}
    for expense in expenses:
        results[expense.id] = suggest_line_item(expense, line_items, min_confidence, allocated)

    suggested = sum(1 for r in results.values() if r is not None)
    logger.info(f"Computed suggestions for {len(results)} expenses ({suggested} with a candidate)")
    return results
