"""
Entity Normalizer for the Correlation Engine.

Flattens estimate, quote and change-order line items into one LineItem
shape. Baseline cost fallback chains:
- Estimate:      quantity × cost_per_unit, else stored total_cost, else 0
- Quote:         cost_per_unit × quantity, else stored total_cost, else 0
- Change order:  stored total_cost, else quantity × cost_per_unit, else 0

Zero-baseline items are kept: they still represent unbilled scope.
"""
import logging
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from ..config import get_config
from ..domain.entities import (
    ChangeOrderLineItemRecord,
    ChangeOrderRecord,
    CostCategory,
    EstimateLineItemRecord,
    LedgerSnapshot,
    LineItem,
    QuoteLineItemRecord,
    QuoteRecord,
    SourceType,
)
from ..domain.money import ZERO

logger = logging.getLogger(__name__)

_CATEGORY_VALUES = {c.value: c for c in CostCategory}


# =============================================================================
# Field Normalization
# =============================================================================

def normalize_category(value: Optional[str], aliases: Optional[Dict[str, str]] = None) -> CostCategory:
    """
    Map a raw category string to a CostCategory.
    Examples:
        'materials'       → CostCategory.MATERIALS
        'Labor_Internal'  → CostCategory.LABOR   (alias)
        'Vehicle Maintenance' → CostCategory.VEHICLE_MAINTENANCE
        None / 'unknown'  → CostCategory.OTHER
    """
    if not value or not isinstance(value, str):
        return CostCategory.OTHER

    if aliases is None:
        aliases = get_config().category_aliases

    key = value.strip().lower().replace('-', '_').replace(' ', '_')
    key = aliases.get(key, key)
    return _CATEGORY_VALUES.get(key, CostCategory.OTHER)


def _product(quantity: Optional[Decimal], cost_per_unit: Optional[Decimal]) -> Optional[Decimal]:
    if quantity is None or cost_per_unit is None:
        return None
    return quantity * cost_per_unit


def compute_estimate_baseline(record: EstimateLineItemRecord) -> Decimal:
    """quantity × cost_per_unit, falling back to total_cost when that is zero or unavailable."""
    calculated = _product(record.quantity, record.cost_per_unit)
    if calculated:
        return calculated
    if record.total_cost is not None:
        return record.total_cost
    return ZERO


def compute_quote_line_cost(record: QuoteLineItemRecord) -> Decimal:
    """cost_per_unit × quantity when positive, otherwise the stored total_cost."""
    calculated = _product(record.quantity, record.cost_per_unit)
    if calculated is not None and calculated > 0:
        return calculated
    if record.total_cost is not None:
        return record.total_cost
    return ZERO


def compute_change_order_baseline(record: ChangeOrderLineItemRecord) -> Decimal:
    """Stored total_cost is authoritative for change orders."""
    if record.total_cost is not None:
        return record.total_cost
    calculated = _product(record.quantity, record.cost_per_unit)
    return calculated if calculated is not None else ZERO


# =============================================================================
# Ledger Normalization
# =============================================================================

def normalize_estimate_line_items(
    records: Iterable[EstimateLineItemRecord],
    project_id: str,
) -> List[LineItem]:
    """Convert estimate line items for one project."""
    return [
        LineItem(
            id=r.id,
            source_type=SourceType.ESTIMATE,
            source_id=r.estimate_id or '',
            project_id=project_id,
            category=normalize_category(r.category),
            description=r.description,
            baseline_cost=compute_estimate_baseline(r),
        )
        for r in records
    ]


def normalize_quote_line_items(
    quotes: Iterable[QuoteRecord],
    records: Iterable[QuoteLineItemRecord],
    project_id: str,
    accepted_statuses: Optional[List[str]] = None,
) -> List[LineItem]:
    """
    Convert line items of accepted quotes.

    Lines whose parent quote is missing or not accepted are left out: they
    are not commitments and cannot be allocation candidates.
    """
    if accepted_statuses is None:
        accepted_statuses = get_config().accepted_quote_statuses

    quotes_by_id = {q.id: q for q in quotes}
    items = []
    for r in records:
        quote = quotes_by_id.get(r.quote_id)
        if quote is None:
            logger.debug(f"Quote line item {r.id} references unknown quote {r.quote_id}")
            continue
        if quote.status not in accepted_statuses:
            continue
        items.append(LineItem(
            id=r.id,
            source_type=SourceType.QUOTE,
            source_id=quote.id,
            project_id=quote.project_id or project_id,
            category=normalize_category(r.category),
            description=r.description,
            baseline_cost=compute_quote_line_cost(r),
            payee_name=quote.payee_name,
            estimate_line_item_id=r.estimate_line_item_id,
            change_order_line_item_id=r.change_order_line_item_id,
        ))
    return items


def normalize_change_order_line_items(
    change_orders: Iterable[ChangeOrderRecord],
    records: Iterable[ChangeOrderLineItemRecord],
    project_id: str,
    included_statuses: Optional[List[str]] = None,
) -> List[LineItem]:
    """Convert line items of included (approved by default) change orders."""
    if included_statuses is None:
        included_statuses = get_config().included_change_order_statuses

    orders_by_id = {co.id: co for co in change_orders}
    items = []
    for r in records:
        order = orders_by_id.get(r.change_order_id)
        if order is None:
            logger.debug(f"Change order line item {r.id} references unknown change order {r.change_order_id}")
            continue
        if order.status not in included_statuses:
            continue
        items.append(LineItem(
            id=r.id,
            source_type=SourceType.CHANGE_ORDER,
            source_id=order.id,
            project_id=order.project_id or project_id,
            category=normalize_category(r.category),
            description=r.description,
            baseline_cost=compute_change_order_baseline(r),
            payee_name=r.payee_name,
            change_order_number=order.number,
            change_order_status=order.status,
        ))
    return items


def normalize_snapshot(snapshot: LedgerSnapshot) -> List[LineItem]:
    """
    Flatten every ledger in a snapshot into LineItems.

    Order is estimates, quotes, then change orders, each in input order.
    A repeated line item id keeps its first occurrence.
    """
    combined = (
        normalize_estimate_line_items(snapshot.estimate_line_items, snapshot.project_id)
        + normalize_quote_line_items(snapshot.quotes, snapshot.quote_line_items, snapshot.project_id)
        + normalize_change_order_line_items(
            snapshot.change_orders, snapshot.change_order_line_items, snapshot.project_id
        )
    )

    seen = set()
    items = []
    for item in combined:
        if item.id in seen:
            logger.warning(f"Duplicate line item id {item.id} ({item.source_type.value}); keeping first")
            continue
        seen.add(item.id)
        items.append(item)

    logger.debug(f"Normalized {len(items)} line items for project {snapshot.project_id}")
    return items
