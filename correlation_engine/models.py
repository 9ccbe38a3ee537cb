"""
Database models and SQLAlchemy setup for the Correlation Engine.

Only the spend side and the correlation-link table live here; estimates,
quotes and change orders are read from the external ledger store.
All monetary values stored as integer cents to avoid float drift.
"""
import os
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    create_engine, Column, Integer, String, Boolean,
    DateTime, Date, Text, ForeignKey, Index
)
from sqlalchemy.orm import declarative_base, sessionmaker, relationship

from .domain.entities import CorrelationLinkRecord, ExpenseRecord, ExpenseSplitRecord

DATABASE_URL = os.environ.get("CORRELATION_ENGINE_DATABASE_URL", "sqlite:///./correlation_engine.db")
engine = create_engine(DATABASE_URL, connect_args={"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {})
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def _new_id() -> str:
    return str(uuid.uuid4())


def cents_to_decimal(cents: Optional[int]) -> Optional[Decimal]:
    if cents is None:
        return None
    return Decimal(cents) / 100


class CorrelationType:
    """Values of ExpenseLineItemCorrelation.correlation_type."""
    MANUAL = "manual"
    AUTO_MATCH = "auto_match"
    REALLOCATED = "reallocated"


# =============================================================================
# Spend Ledger
# =============================================================================

class Expense(Base):
    """
    A recorded expense.
    is_planned is set while at least one whole-expense correlation exists.
    """
    __tablename__ = "expenses"

    id = Column(String(36), primary_key=True, default=_new_id)
    project_id = Column(String(36), nullable=True, index=True)
    amount_cents = Column(Integer, nullable=True)
    category = Column(String(50), nullable=True)
    payee_name = Column(String(255), nullable=True)
    expense_date = Column(Date, nullable=True, index=True)
    description = Column(String(500), nullable=True)
    is_planned = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    splits = relationship("ExpenseSplit", back_populates="expense", cascade="all, delete-orphan")

    @property
    def amount(self) -> Optional[Decimal]:
        return cents_to_decimal(self.amount_cents)

    def to_record(self) -> ExpenseRecord:
        return ExpenseRecord(
            id=self.id,
            amount=self.amount,
            category=self.category,
            payee_name=self.payee_name,
            project_id=self.project_id,
            expense_date=self.expense_date,
            description=self.description,
        )


class ExpenseSplit(Base):
    """A portion of an expense assigned to one project."""
    __tablename__ = "expense_splits"

    id = Column(String(36), primary_key=True, default=_new_id)
    expense_id = Column(String(36), ForeignKey('expenses.id'), nullable=False, index=True)
    project_id = Column(String(36), nullable=True, index=True)
    split_amount_cents = Column(Integer, nullable=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    expense = relationship("Expense", back_populates="splits")

    @property
    def split_amount(self) -> Decimal:
        return cents_to_decimal(self.split_amount_cents)

    def to_record(self) -> ExpenseSplitRecord:
        return ExpenseSplitRecord(
            id=self.id,
            expense_id=self.expense_id,
            split_amount=self.split_amount,
            project_id=self.project_id,
        )


# =============================================================================
# Correlation Links
# =============================================================================

class ExpenseLineItemCorrelation(Base):
    """
    Allocation of an expense (or one split of it) to exactly one target:
    an estimate line item, a quote, or a change-order line item.
    """
    __tablename__ = "expense_line_item_correlations"

    id = Column(String(36), primary_key=True, default=_new_id)
    expense_id = Column(String(36), ForeignKey('expenses.id'), nullable=True, index=True)
    expense_split_id = Column(String(36), ForeignKey('expense_splits.id'), nullable=True, index=True)
    estimate_line_item_id = Column(String(36), nullable=True, index=True)
    change_order_line_item_id = Column(String(36), nullable=True, index=True)
    quote_id = Column(String(36), nullable=True, index=True)
    correlation_type = Column(String(30), default=CorrelationType.MANUAL)  # manual, auto_match, reallocated
    auto_correlated = Column(Boolean, default=False, nullable=False)
    confidence_score = Column(Integer, nullable=True)  # 0-100, suggestions only
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index('ix_correlation_expense_split', 'expense_id', 'expense_split_id'),
    )

    @property
    def target_id(self) -> Optional[str]:
        return self.estimate_line_item_id or self.change_order_line_item_id or self.quote_id

    def to_record(self) -> CorrelationLinkRecord:
        return CorrelationLinkRecord(
            id=self.id,
            expense_id=self.expense_id,
            expense_split_id=self.expense_split_id,
            estimate_line_item_id=self.estimate_line_item_id,
            change_order_line_item_id=self.change_order_line_item_id,
            quote_id=self.quote_id,
            correlation_type=self.correlation_type,
            auto_correlated=self.auto_correlated,
            notes=self.notes,
        )


class AllocationChangeLog(Base):
    """
    Audit log for allocation changes.
    Tracks every allocate / deallocate / reallocate for traceability.
    """
    __tablename__ = "allocation_change_log"

    id = Column(Integer, primary_key=True, index=True)
    action = Column(String(20), index=True)  # allocate, deallocate, reallocate
    correlation_id = Column(String(36), index=True)
    expense_id = Column(String(36), nullable=True, index=True)
    expense_split_id = Column(String(36), nullable=True)
    line_item_id = Column(String(36), nullable=True)
    source_type = Column(String(20), nullable=True)  # estimate, quote, change_order
    previous_line_item_id = Column(String(36), nullable=True)
    confidence_score = Column(Integer, nullable=True)
    change_reason = Column(String(200), nullable=True)
    changed_by = Column(String(100), default="user")
    changed_at = Column(DateTime, default=datetime.utcnow)


def init_db():
    """Initialize the database and create all tables."""
    Base.metadata.create_all(bind=engine)


def get_db():
    """Yield a session and close it afterwards."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
