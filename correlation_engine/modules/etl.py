"""
ETL Module for the Correlation Engine.

Loads per-ledger CSV exports for one project into a LedgerSnapshot. Column
headers may be snake_case or camelCase; money columns go through
parse_money so malformed cells become None rather than failing the load.

Expected files in the export directory (any may be missing):
    estimates.csv, estimate_line_items.csv, quotes.csv, quote_line_items.csv,
    change_orders.csv, change_order_line_items.csv, expenses.csv,
    expense_splits.csv, correlations.csv
"""
import logging
from pathlib import Path
from typing import Dict, List, Optional, Type, TypeVar, Union

import pandas as pd
from pydantic import BaseModel, ValidationError

from ..domain.entities import (
    ChangeOrderLineItemRecord,
    ChangeOrderRecord,
    CorrelationLinkRecord,
    EstimateLineItemRecord,
    ExpenseRecord,
    ExpenseSplitRecord,
    LedgerSnapshot,
    QuoteLineItemRecord,
    QuoteRecord,
)
from ..domain.money import parse_money, to_cents

logger = logging.getLogger(__name__)

__all__ = [
    'LEDGER_FILES',
    'parse_money',
    'parse_money_to_cents',
    'read_ledger_csv',
    'load_records',
    'load_ledger_snapshot',
]

R = TypeVar('R', bound=BaseModel)

LEDGER_FILES = {
    'estimates': 'estimates.csv',
    'estimate_line_items': 'estimate_line_items.csv',
    'quotes': 'quotes.csv',
    'quote_line_items': 'quote_line_items.csv',
    'change_orders': 'change_orders.csv',
    'change_order_line_items': 'change_order_line_items.csv',
    'expenses': 'expenses.csv',
    'expense_splits': 'expense_splits.csv',
    'correlations': 'correlations.csv',
}


def parse_money_to_cents(value) -> int:
    """
    Parse a currency value to integer cents.

    Missing or malformed values are 0 cents.
    """
    amount = parse_money(value)
    if amount is None:
        return 0
    return int(to_cents(amount) * 100)


def read_ledger_csv(path: Path) -> pd.DataFrame:
    """
    Read one ledger export.

    Every column is read as text so ids keep their leading zeros and money
    is parsed by the record models. Returns an empty DataFrame when the
    file does not exist.
    """
    if not path.exists():
        logger.debug(f"Ledger export not found: {path}")
        return pd.DataFrame()

    df = pd.read_csv(path, encoding='utf-8-sig', dtype=str)
    df.columns = [c.strip() for c in df.columns]
    return df


def _column(df: pd.DataFrame, *names: str) -> Optional[str]:
    for name in names:
        if name in df.columns:
            return name
    return None


def load_records(df: pd.DataFrame, model: Type[R]) -> List[R]:
    """
    Convert DataFrame rows to record models.

    Rows that fail validation (e.g. no id) are skipped with a warning.
    """
    if df.empty:
        return []

    cleaned = df.astype(object).where(df.notna(), None)
    records = []
    for index, row in enumerate(cleaned.to_dict(orient='records')):
        try:
            records.append(model.model_validate(row))
        except ValidationError as e:
            logger.warning(f"Skipping {model.__name__} row {index}: {e.error_count()} validation error(s)")
    return records


def _filter_by_project(df: pd.DataFrame, project_id: str) -> pd.DataFrame:
    col = _column(df, 'project_id', 'projectId')
    if col is None:
        return df
    return df[df[col].fillna('').str.strip() == project_id]


def _filter_by_parent(df: pd.DataFrame, parent_ids: set, *names: str) -> pd.DataFrame:
    col = _column(df, *names)
    if col is None:
        return df
    return df[df[col].fillna('').str.strip().isin(parent_ids)]


def _ids(df: pd.DataFrame) -> set:
    if df.empty or 'id' not in df.columns:
        return set()
    return set(df['id'].dropna().str.strip())


def load_ledger_snapshot(directory: Union[str, Path], project_id: str) -> LedgerSnapshot:
    """
    Load every ledger export for one project.

    Rows are scoped to the project through their own project id, or through
    their parent's (line items through their quote / change order /
    estimate, splits and correlations through their expense).

    Args:
        directory: Directory holding the CSV exports
        project_id: Project to load

    Returns:
        LedgerSnapshot
    """
    directory = Path(directory)
    frames: Dict[str, pd.DataFrame] = {
        key: read_ledger_csv(directory / filename)
        for key, filename in LEDGER_FILES.items()
    }

    # no estimates export means no estimate belongs to the project
    estimate_items = frames['estimate_line_items']
    if not estimate_items.empty:
        estimate_ids = _ids(_filter_by_project(frames['estimates'], project_id))
        estimate_items = _filter_by_parent(estimate_items, estimate_ids, 'estimate_id', 'estimateId')

    quotes = frames['quotes']
    if not quotes.empty:
        quotes = _filter_by_project(quotes, project_id)
    quote_items = frames['quote_line_items']
    if not quote_items.empty:
        quote_items = _filter_by_parent(quote_items, _ids(quotes), 'quote_id', 'quoteId')

    change_orders = frames['change_orders']
    if not change_orders.empty:
        change_orders = _filter_by_project(change_orders, project_id)
    change_order_items = frames['change_order_line_items']
    if not change_order_items.empty:
        change_order_items = _filter_by_parent(
            change_order_items, _ids(change_orders), 'change_order_id', 'changeOrderId'
        )

    expenses = frames['expenses']
    if not expenses.empty:
        expenses = _filter_by_project(expenses, project_id)
    expense_ids = _ids(expenses)

    splits = frames['expense_splits']
    if not splits.empty:
        project_col = _column(splits, 'project_id', 'projectId')
        parent_col = _column(splits, 'expense_id', 'expenseId')
        mask = pd.Series(False, index=splits.index)
        if project_col:
            mask |= splits[project_col].fillna('').str.strip() == project_id
        if parent_col:
            mask |= splits[parent_col].fillna('').str.strip().isin(expense_ids)
        splits = splits[mask]
    split_ids = _ids(splits)

    correlations = frames['correlations']
    if not correlations.empty:
        expense_col = _column(correlations, 'expense_id', 'expenseId')
        split_col = _column(correlations, 'expense_split_id', 'expenseSplitId')
        mask = pd.Series(False, index=correlations.index)
        if expense_col:
            mask |= correlations[expense_col].fillna('').str.strip().isin(expense_ids)
        if split_col:
            mask |= correlations[split_col].fillna('').str.strip().isin(split_ids)
        correlations = correlations[mask]

    snapshot = LedgerSnapshot(
        project_id=project_id,
        estimate_line_items=load_records(estimate_items, EstimateLineItemRecord),
        quotes=load_records(quotes, QuoteRecord),
        quote_line_items=load_records(quote_items, QuoteLineItemRecord),
        change_orders=load_records(change_orders, ChangeOrderRecord),
        change_order_line_items=load_records(change_order_items, ChangeOrderLineItemRecord),
        expenses=load_records(expenses, ExpenseRecord),
        expense_splits=load_records(splits, ExpenseSplitRecord),
        correlations=load_records(correlations, CorrelationLinkRecord),
    )

    logger.info(
        f"Loaded snapshot for project {project_id}: "
        f"{len(snapshot.estimate_line_items)} estimate items, "
        f"{len(snapshot.quote_line_items)} quote items, "
        f"{len(snapshot.change_order_line_items)} change order items, "
        f"{len(snapshot.expenses)} expenses, {len(snapshot.correlations)} correlations"
    )
    return snapshot
