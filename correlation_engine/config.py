"""
Configuration loader for the Correlation Engine.

Loads settings from correlation_engine_config.yaml and provides typed access
to all configuration sections.
"""
import os
from decimal import Decimal
from pathlib import Path
from typing import Any, Optional
from functools import lru_cache

import yaml


# Default config path relative to project root
DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / "correlation_engine_config.yaml"

CONFIG_PATH_ENV = "CORRELATION_ENGINE_CONFIG"

DEFAULT_CROSSWALK = {
    "labor": ["labor"],
    "subcontractor": ["subcontractor"],
    "materials": ["materials"],
    "equipment": ["equipment"],
    "permits": ["permits"],
    "management": ["management"],
    "tools": ["equipment"],
    "software": ["management"],
    "vehicle_maintenance": ["equipment"],
    "gas": ["equipment"],
    "meals": ["management"],
    "office_expenses": ["management"],
    "vehicle_expenses": ["equipment"],
    "other": ["other"],
}


class ConfigurationError(Exception):
    """Raised when configuration loading or validation fails."""
    pass


class EngineConfig:
    """
    Configuration manager for the Correlation Engine.

    Loads YAML configuration and provides typed access to all sections.
    Use get_config() to obtain the singleton instance.
    """

    def __init__(self, config_path: Optional[Path] = None):
        self._config_path = config_path or DEFAULT_CONFIG_PATH
        self._config: dict = {}
        self._load()

    def _load(self) -> None:
        """Load configuration from YAML file."""
        if not self._config_path.exists():
            raise ConfigurationError(f"Config file not found: {self._config_path}")

        try:
            with open(self._config_path, 'r') as f:
                self._config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}")

        if not isinstance(self._config, dict):
            raise ConfigurationError("Config file must contain a YAML mapping")

    def reload(self) -> None:
        """Reload configuration from disk."""
        self._load()
        get_config.cache_clear()

    @property
    def version(self) -> str:
        """Configuration file version."""
        return self._config.get("version", "unknown")

    # =========================================================================
    # Allocations
    # =========================================================================

    @property
    def allocations(self) -> dict:
        """Allocation configuration."""
        return self._config.get("allocations", {})

    @property
    def full_allocation_threshold(self) -> Decimal:
        """Fraction of baseline that counts as fully allocated."""
        return Decimal(str(self.allocations.get("full_threshold", 0.95)))

    @property
    def internal_categories(self) -> list[str]:
        """Categories excluded from the external allocation summary."""
        return self.allocations.get("internal_categories", ["labor", "management"])

    @property
    def split_tolerance(self) -> Decimal:
        """Allowed difference between split totals and the parent expense."""
        return Decimal(str(self.allocations.get("split_tolerance", 0.01)))

    # =========================================================================
    # Ledgers
    # =========================================================================

    @property
    def ledgers(self) -> dict:
        """Ledger status filters."""
        return self._config.get("ledgers", {})

    @property
    def accepted_quote_statuses(self) -> list[str]:
        """Quote statuses whose line items count as commitments."""
        return self.ledgers.get("accepted_quote_statuses", ["accepted"])

    @property
    def included_change_order_statuses(self) -> list[str]:
        """Change order statuses whose line items enter the budget."""
        return self.ledgers.get("included_change_order_statuses", ["approved"])

    # =========================================================================
    # Categories
    # =========================================================================

    @property
    def categories(self) -> dict:
        """Category alias and crosswalk configuration."""
        return self._config.get("categories", {})

    @property
    def category_aliases(self) -> dict:
        """Alternate spellings mapped to canonical category values."""
        return self.categories.get("aliases", {})

    @property
    def category_crosswalk(self) -> dict:
        """Expense category -> allowed line item categories."""
        return self.categories.get("crosswalk", DEFAULT_CROSSWALK)

    def get_matching_categories(self, expense_category: str) -> list[str]:
        """
        Get line item categories an expense category may be allocated to.

        Args:
            expense_category: Canonical expense category value

        Returns:
            List of canonical line item category values (empty if unmapped)
        """
        return self.category_crosswalk.get(expense_category, [])

    # =========================================================================
    # Suggestion Engine
    # =========================================================================

    @property
    def suggestion_engine(self) -> dict:
        """Suggestion engine configuration."""
        return self._config.get("suggestion_engine", {})

    @property
    def suggestion_weights(self) -> dict:
        """Point weights for each confidence component."""
        return self.suggestion_engine.get("weights", {
            "category_match": 50,
            "payee_match": 30,
            "amount_proximity": 15,
            "description_match": 5,
        })

    @property
    def payee_tiers(self) -> list:
        """Fuzzy payee ratio tiers, highest first."""
        tiers = self.suggestion_engine.get("payee_tiers", [
            {"min_ratio": 90, "score": 1.0},
            {"min_ratio": 75, "score": 0.667},
            {"min_ratio": 60, "score": 0.333},
        ])
        return sorted(tiers, key=lambda t: t["min_ratio"], reverse=True)

    @property
    def amount_tiers(self) -> list:
        """Amount proximity tiers, tightest first."""
        tiers = self.suggestion_engine.get("amount_tiers", [
            {"max_percent_diff": 5, "score": 1.0},
            {"max_percent_diff": 10, "score": 0.667},
            {"max_percent_diff": 20, "score": 0.333},
        ])
        return sorted(tiers, key=lambda t: t["max_percent_diff"])

    @property
    def min_keyword_length(self) -> int:
        """Minimum word length considered for description overlap."""
        return self.suggestion_engine.get("min_keyword_length", 4)

    @property
    def stopwords(self) -> list[str]:
        """Words ignored by description overlap."""
        return self.suggestion_engine.get("stopwords", ["the", "and", "for", "with", "from"])

    @property
    def source_priority(self) -> dict:
        """Rank of each source type (lower ranks first)."""
        return self.suggestion_engine.get("source_priority", {
            "quote": 0,
            "change_order": 1,
            "estimate": 2,
        })

    @property
    def min_confidence(self) -> int:
        """Minimum confidence for a suggestion to be returned."""
        return self.suggestion_engine.get("min_confidence", 50)

    @property
    def auto_allocate_confidence(self) -> int:
        """Minimum confidence for automatic allocation."""
        return self.suggestion_engine.get("auto_allocate_confidence", 75)

    @property
    def confidence_bands(self) -> dict:
        """Confidence band definitions."""
        return self.suggestion_engine.get("confidence_bands", {})

    def get_confidence_band(self, confidence: int) -> str:
        """
        Get confidence band name for a score.

        Args:
            confidence: Integer confidence between 0 and 100

        Returns:
            Band name: 'high', 'medium', or 'low'
        """
        bands = self.confidence_bands
        if confidence >= bands.get("high", {}).get("min_score", 75):
            return "high"
        elif confidence >= bands.get("medium", {}).get("min_score", 50):
            return "medium"
        else:
            return "low"

    # =========================================================================
    # Raw Access
    # =========================================================================

    def get(self, key: str, default: Any = None) -> Any:
        """Get a top-level config value by key."""
        return self._config.get(key, default)

    def __getitem__(self, key: str) -> Any:
        """Dictionary-style access to config."""
        return self._config[key]

    def __contains__(self, key: str) -> bool:
        """Check if key exists in config."""
        return key in self._config


@lru_cache(maxsize=1)
def get_config(config_path: Optional[str] = None) -> EngineConfig:
    """
    Get the singleton configuration instance.

    Args:
        config_path: Optional path to config file. Only used on first call.
            Falls back to the CORRELATION_ENGINE_CONFIG environment variable.

    Returns:
        EngineConfig singleton instance
    """
    config_path = config_path or os.environ.get(CONFIG_PATH_ENV)
    path = Path(config_path) if config_path else None
    return EngineConfig(path)


def reload_config() -> EngineConfig:
    """Reload configuration from disk and return new instance."""
    get_config.cache_clear()
    return get_config()
