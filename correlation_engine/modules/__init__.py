# Correlation Engine - Modules
from .normalizer import normalize_snapshot, normalize_category
from .resolver import resolve_correlations, resolve_snapshot, pick_quote_candidate, ResolutionResult
from .aggregator import aggregate, allocation_status, AggregationResult
from .suggestion_engine import rank_candidates, suggest_line_item, compute_all_suggestions
from .rollup import compute_variance, compute_margin, VarianceFigures
from .etl import load_ledger_snapshot, parse_money

__all__ = [
    "normalize_snapshot",
    "normalize_category",
    "resolve_correlations",
    "resolve_snapshot",
    "pick_quote_candidate",
    "ResolutionResult",
    "aggregate",
    "allocation_status",
    "AggregationResult",
    "rank_candidates",
    "suggest_line_item",
    "compute_all_suggestions",
    "compute_variance",
    "compute_margin",
    "VarianceFigures",
    "load_ledger_snapshot",
    "parse_money",
]
