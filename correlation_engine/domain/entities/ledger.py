"""
Ledger Records - raw rows as supplied by the external ledger store.

Every record accepts both snake_case and camelCase keys and tolerates
missing or malformed money fields (they parse to None). Downstream code
never sees these shapes: the normalizer turns them into LineItems.
"""
from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, List, Optional

from pydantic import AliasChoices, BaseModel, BeforeValidator, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..money import parse_money


def _optional_date(value):
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        return None


def _optional_text(value):
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _text(value):
    return "" if value is None else str(value).strip()


def _status(value):
    return _text(value).lower()


def _flag(value):
    return False if value is None else value


Money = Annotated[Optional[Decimal], BeforeValidator(parse_money)]
OptionalText = Annotated[Optional[str], BeforeValidator(_optional_text)]
OptionalDate = Annotated[Optional[date], BeforeValidator(_optional_date)]
Text = Annotated[str, BeforeValidator(_text)]
Status = Annotated[str, BeforeValidator(_status)]
Flag = Annotated[bool, BeforeValidator(_flag)]


class LedgerRecord(BaseModel):
    """Base for all ingress records."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
        coerce_numbers_to_str=True,
    )


# =============================================================================
# Budget Ledgers
# =============================================================================

class EstimateLineItemRecord(LedgerRecord):
    """A priced scope entry on an estimate."""

    id: str
    estimate_id: OptionalText = None
    category: OptionalText = None
    description: Text = ""
    quantity: Money = None
    cost_per_unit: Money = None
    total_cost: Money = None


class QuoteRecord(LedgerRecord):
    """A vendor quote header."""

    id: str
    project_id: OptionalText = None
    status: Status = ""
    payee_name: OptionalText = None


class QuoteLineItemRecord(LedgerRecord):
    """A quote line; may reference an estimate or change-order line item."""

    id: str
    quote_id: str
    estimate_line_item_id: OptionalText = None
    change_order_line_item_id: OptionalText = None
    category: OptionalText = None
    description: Text = ""
    quantity: Money = None
    cost_per_unit: Money = None
    total_cost: Money = None


class ChangeOrderRecord(LedgerRecord):
    """A change order header."""

    id: str
    project_id: OptionalText = None
    number: OptionalText = Field(
        default=None,
        validation_alias=AliasChoices("number", "change_order_number", "changeOrderNumber"),
    )
    status: Status = ""


class ChangeOrderLineItemRecord(LedgerRecord):
    """A priced scope entry on a change order."""

    id: str
    change_order_id: str
    category: OptionalText = None
    description: Text = ""
    quantity: Money = None
    cost_per_unit: Money = None
    total_cost: Money = None
    payee_name: OptionalText = None


# =============================================================================
# Spend Ledgers
# =============================================================================

class ExpenseRecord(LedgerRecord):
    """A recorded expense."""

    id: str
    amount: Money = None
    category: OptionalText = None
    payee_name: OptionalText = None
    project_id: OptionalText = None
    expense_date: OptionalDate = None
    description: Text = ""


class ExpenseSplitRecord(LedgerRecord):
    """A portion of an expense assigned to one project."""

    id: str
    expense_id: str
    split_amount: Money = None
    project_id: OptionalText = None


class CorrelationLinkRecord(LedgerRecord):
    """A persisted allocation of an expense (or split) to one target."""

    id: str
    expense_id: OptionalText = None
    expense_split_id: OptionalText = None
    estimate_line_item_id: OptionalText = None
    change_order_line_item_id: OptionalText = None
    quote_id: OptionalText = None
    correlation_type: OptionalText = None
    auto_correlated: Flag = False
    notes: OptionalText = None


class LedgerSnapshot(LedgerRecord):
    """All ledger collections for one project, fetched before resolution."""

    project_id: str
    estimate_line_items: List[EstimateLineItemRecord] = Field(default_factory=list)
    quotes: List[QuoteRecord] = Field(default_factory=list)
    quote_line_items: List[QuoteLineItemRecord] = Field(default_factory=list)
    change_orders: List[ChangeOrderRecord] = Field(default_factory=list)
    change_order_line_items: List[ChangeOrderLineItemRecord] = Field(default_factory=list)
    expenses: List[ExpenseRecord] = Field(default_factory=list)
    expense_splits: List[ExpenseSplitRecord] = Field(default_factory=list)
    correlations: List[CorrelationLinkRecord] = Field(default_factory=list)
