"""
Infrastructure Layer - repository implementations over the correlation-link table.
"""

from .repositories import (
    BaseRepository,
    ExpenseRepository,
    CorrelationRepository,
)

__all__ = [
    'BaseRepository',
    'ExpenseRepository',
    'CorrelationRepository',
]
