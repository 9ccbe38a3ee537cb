"""
Correlation Engine - reconciles estimate, quote, change-order and expense
ledgers of a construction project.
"""

__version__ = "1.0.0"
