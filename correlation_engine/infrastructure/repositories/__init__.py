"""
Repository implementations for data access layer.
"""
from .base_repository import BaseRepository
from .expense_repository import ExpenseRepository
from .correlation_repository import CorrelationRepository

__all__ = [
    'BaseRepository',
    'ExpenseRepository',
    'CorrelationRepository',
]
