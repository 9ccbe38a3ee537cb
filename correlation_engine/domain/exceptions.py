"""
Domain Exceptions for the Correlation Engine.

Custom exceptions enforcing allocation rules:
- Allocation targets must exist
- One allocation per (source, target) pair
- Splits stay within their own project
- Conservation invariants
"""


class DomainError(Exception):
    """Base exception for all domain errors."""

    def __init__(self, message: str, code: str = "DOMAIN_ERROR"):
        self.message = message
        self.code = code
        super().__init__(self.message)


# =============================================================================
# Lookup Exceptions
# =============================================================================

class LineItemNotFoundError(DomainError):
    """Raised when a line item cannot be found."""

    def __init__(self, line_item_id: str):
        message = f"Line item with id '{line_item_id}' not found"
        super().__init__(message, code="LINE_ITEM_NOT_FOUND")
        self.line_item_id = line_item_id


class ExpenseNotFoundError(DomainError):
    """Raised when an expense cannot be found."""

    def __init__(self, expense_id: str):
        message = f"Expense with id '{expense_id}' not found"
        super().__init__(message, code="EXPENSE_NOT_FOUND")
        self.expense_id = expense_id


class SplitNotFoundError(DomainError):
    """Raised when an expense split cannot be found."""

    def __init__(self, split_id: str):
        message = f"Expense split with id '{split_id}' not found"
        super().__init__(message, code="SPLIT_NOT_FOUND")
        self.split_id = split_id


class CorrelationNotFoundError(DomainError):
    """Raised when a correlation link cannot be found."""

    def __init__(self, link_id: str):
        message = f"Correlation with id '{link_id}' not found"
        super().__init__(message, code="CORRELATION_NOT_FOUND")
        self.link_id = link_id


# =============================================================================
# Allocation Exceptions
# =============================================================================

class DuplicateAllocationError(DomainError):
    """Raised when the same expense or split is allocated to a target twice."""

    def __init__(self, source_id: str, line_item_id: str):
        message = (
            f"'{source_id}' is already allocated to line item '{line_item_id}'"
        )
        super().__init__(message, code="DUPLICATE_ALLOCATION")
        self.source_id = source_id
        self.line_item_id = line_item_id


class CrossProjectSplitError(DomainError):
    """Raised when a split is allocated to a line item in another project."""

    def __init__(self, split_id: str, split_project_id: str, line_item_project_id: str):
        message = (
            f"Split '{split_id}' belongs to project '{split_project_id}' and cannot be "
            f"allocated to a line item in project '{line_item_project_id}'"
        )
        super().__init__(message, code="CROSS_PROJECT_SPLIT")
        self.split_id = split_id
        self.split_project_id = split_project_id
        self.line_item_project_id = line_item_project_id


class InvalidAllocationTargetError(DomainError):
    """Raised when a line item cannot be used as an allocation target."""

    def __init__(self, line_item_id: str, reason: str):
        message = f"Line item '{line_item_id}' is not a valid allocation target: {reason}"
        super().__init__(message, code="INVALID_ALLOCATION_TARGET")
        self.line_item_id = line_item_id
        self.reason = reason


# =============================================================================
# Aggregation Exceptions
# =============================================================================

class InvariantViolationError(DomainError):
    """Raised when a mathematical invariant is violated."""

    def __init__(self, invariant_name: str, expected: str, actual: str):
        message = (
            f"Invariant '{invariant_name}' violated. "
            f"Expected: {expected}, Actual: {actual}"
        )
        super().__init__(message, code="INVARIANT_VIOLATION")
        self.invariant_name = invariant_name
        self.expected = expected
        self.actual = actual
