"""
Domain Services - Business logic operating on domain entities.
"""

from .financial_detail_service import FinancialDetailService, ProjectFinancialDetail
from .allocation_service import AllocationService

__all__ = [
    'FinancialDetailService', 'ProjectFinancialDetail',
    'AllocationService',
]
