"""User Preferences Management for moneybook.

Provides data-driven configuration with sensible defaults. Preferences
live in <data root>/config/preferences.json and are deep-merged over
DEFAULT_PREFERENCES, so a file only needs the keys it changes.
"""

import copy
import json
import logging
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Optional

from moneybook.core.exceptions import ValidationError

logger = logging.getLogger(__name__)

ROLLOVER_POLICIES = {"floor", "carry"}

# Default preferences (used when user hasn't configured)
DEFAULT_PREFERENCES = {
    "$schema": "moneybook_preferences_v1",
    "version": "1.0",

    "envelopes": {
        "rollover_policy": "floor"  # floor | carry
    },

    "fx": {
        "max_lookback_days": None  # None = unlimited prior-date fallback
    },

    "portfolio": {
        "fy_start_month": 1
    },

    "display": {
        "currency_symbol": "",
        "decimal_places": 2,
        "negative_in_brackets": False
    },

    "import": {
        "on_error": "abort"  # abort | skip
    }
}


@dataclass
class EnvelopeConfig:
    """Configuration for the envelope engine."""
    rollover_policy: str = "floor"


@dataclass
class FxConfig:
    """Configuration for rate lookup."""
    max_lookback_days: Optional[int] = None


@dataclass
class PortfolioConfig:
    """Configuration for gains reporting."""
    fy_start_month: int = 1


@dataclass
class DisplayConfig:
    """Configuration for display formatting."""
    currency_symbol: str = ""
    decimal_places: int = 2
    negative_in_brackets: bool = False

    def format_amount(self, amount: Decimal, currency: str = "") -> str:
        """Format an exact amount for terminal output."""
        prefix = self.currency_symbol or (f"{currency} " if currency else "")
        text = f"{abs(amount):,.{self.decimal_places}f}"
        if amount < 0:
            if self.negative_in_brackets:
                return f"({prefix}{text})"
            return f"-{prefix}{text}"
        return f"{prefix}{text}"


class UserPreferences:
    """
    User preferences for moneybook.

    Usage:
        prefs = UserPreferences.load(paths.config_dir())
        prefs.envelopes.rollover_policy      # "floor"
        prefs.display.format_amount(Decimal("-12.5"), "USD")
    """

    def __init__(self, data: Dict[str, Any]):
        """Initialize from preference dictionary."""
        self._raw = data

        envelopes = data.get("envelopes", {})
        policy = str(envelopes.get("rollover_policy", "floor")).lower()
        if policy not in ROLLOVER_POLICIES:
            raise ValidationError(
                f"Unknown rollover policy '{policy}' (expected floor or carry)",
                field="envelopes.rollover_policy",
            )
        self.envelopes = EnvelopeConfig(rollover_policy=policy)

        fx = data.get("fx", {})
        lookback = fx.get("max_lookback_days")
        if lookback is not None and (not isinstance(lookback, int) or lookback < 0):
            raise ValidationError(
                f"fx.max_lookback_days must be a non-negative integer or null, got {lookback!r}",
                field="fx.max_lookback_days",
            )
        self.fx = FxConfig(max_lookback_days=lookback)

        portfolio = data.get("portfolio", {})
        fy_start = portfolio.get("fy_start_month", 1)
        if not isinstance(fy_start, int) or not 1 <= fy_start <= 12:
            raise ValidationError(
                f"portfolio.fy_start_month must be 1-12, got {fy_start!r}",
                field="portfolio.fy_start_month",
            )
        self.portfolio = PortfolioConfig(fy_start_month=fy_start)

        display = data.get("display", {})
        self.display = DisplayConfig(
            currency_symbol=display.get("currency_symbol", ""),
            decimal_places=display.get("decimal_places", 2),
            negative_in_brackets=display.get("negative_in_brackets", False)
        )

        self.import_on_error = data.get("import", {}).get("on_error", "abort")

    @classmethod
    def load(cls, config_dir: Optional[Path] = None) -> "UserPreferences":
        """
        Load preferences with fallback to defaults.

        A missing file yields defaults. An unreadable file is logged and
        ignored; a readable file with invalid values raises ValidationError.

        Args:
            config_dir: Directory holding preferences.json

        Returns:
            UserPreferences instance
        """
        data = copy.deepcopy(DEFAULT_PREFERENCES)

        if config_dir is not None:
            prefs_file = Path(config_dir) / "preferences.json"
            if prefs_file.exists():
                try:
                    with open(prefs_file, encoding='utf-8') as f:
                        user_data = json.load(f)
                    data = cls._deep_merge(data, user_data)
                    logger.debug(f"Loaded preferences from {prefs_file}")
                except (OSError, json.JSONDecodeError) as e:
                    logger.warning(f"Failed to load preferences from {prefs_file}: {e}")

        return cls(data)

    @staticmethod
    def _deep_merge(base: Dict, override: Dict) -> Dict:
        """Deep merge two dictionaries, override takes precedence."""
        result = base.copy()
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = UserPreferences._deep_merge(result[key], value)
            else:
                result[key] = value
        return result

    def to_dict(self) -> Dict[str, Any]:
        return copy.deepcopy(self._raw)

    def save(self, config_dir: Path) -> Path:
        """Save current preferences to config_dir/preferences.json."""
        config_dir = Path(config_dir)
        config_dir.mkdir(parents=True, exist_ok=True)
        prefs_file = config_dir / "preferences.json"

        with open(prefs_file, 'w', encoding='utf-8') as f:
            json.dump(self._raw, f, indent=2)

        logger.info(f"Saved preferences to {prefs_file}")
        return prefs_file
