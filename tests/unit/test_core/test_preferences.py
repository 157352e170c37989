"""
Unit tests for preferences and paths.
"""

import json
import pytest
from decimal import Decimal
from pathlib import Path

from moneybook.core.paths import DATA_ROOT_ENV, PathResolver
from moneybook.core.preferences import DisplayConfig, UserPreferences
from moneybook.core.exceptions import ValidationError


class TestUserPreferences:
    """Tests for loading and validating preferences."""

    def test_defaults_without_file(self, tmp_path):
        prefs = UserPreferences.load(tmp_path)
        assert prefs.envelopes.rollover_policy == "floor"
        assert prefs.fx.max_lookback_days is None
        assert prefs.portfolio.fy_start_month == 1
        assert prefs.import_on_error == "abort"

    def test_file_overrides_are_merged(self, tmp_path):
        """Test that a partial file keeps the other defaults."""
        (tmp_path / "preferences.json").write_text(json.dumps({
            "envelopes": {"rollover_policy": "carry"},
            "display": {"negative_in_brackets": True},
        }))
        prefs = UserPreferences.load(tmp_path)
        assert prefs.envelopes.rollover_policy == "carry"
        assert prefs.display.negative_in_brackets is True
        assert prefs.display.decimal_places == 2

    def test_malformed_file_falls_back(self, tmp_path):
        (tmp_path / "preferences.json").write_text("{not json")
        assert UserPreferences.load(tmp_path).envelopes.rollover_policy == "floor"

    def test_invalid_policy_rejected(self):
        with pytest.raises(ValidationError):
            UserPreferences({"envelopes": {"rollover_policy": "sometimes"}})

    def test_invalid_fy_start_rejected(self):
        with pytest.raises(ValidationError):
            UserPreferences({"portfolio": {"fy_start_month": 0}})

    def test_invalid_lookback_rejected(self):
        with pytest.raises(ValidationError):
            UserPreferences({"fx": {"max_lookback_days": -3}})

    def test_save_round_trip(self, tmp_path):
        prefs = UserPreferences({"fx": {"max_lookback_days": 7}})
        prefs.save(tmp_path / "config")
        assert UserPreferences.load(tmp_path / "config").fx.max_lookback_days == 7


class TestDisplayConfig:
    """Tests for amount formatting."""

    def test_default_format(self):
        assert DisplayConfig().format_amount(Decimal("1234.5"), "USD") == "USD 1,234.50"

    def test_negative_in_brackets(self):
        display = DisplayConfig(currency_symbol="$", negative_in_brackets=True)
        assert display.format_amount(Decimal("-12.5")) == "($12.50)"

    def test_negative_sign(self):
        assert DisplayConfig().format_amount(Decimal("-3"), "INR") == "-INR 3.00"


class TestPathResolver:
    """Tests for data root resolution."""

    def test_explicit_root(self, tmp_path):
        paths = PathResolver(tmp_path)
        assert paths.db_path() == tmp_path.resolve() / "moneybook.db"
        assert paths.config_dir() == tmp_path.resolve() / "config"

    def test_env_root(self, tmp_path, monkeypatch):
        monkeypatch.setenv(DATA_ROOT_ENV, str(tmp_path))
        assert PathResolver().root == tmp_path.resolve()

    def test_ensure_structure(self, tmp_path):
        paths = PathResolver(tmp_path / "data")
        paths.ensure_structure()
        assert paths.exports().is_dir()
        assert paths.config_dir().is_dir()

    def test_export_file_name(self, tmp_path):
        from datetime import date
        path = PathResolver(tmp_path).export_file("transactions", "csv", date(2025, 8, 31))
        assert path.name == "transactions_2025-08-31.csv"
        assert path.parent == Path(tmp_path).resolve() / "exports"

    def test_preferences_from_root(self, tmp_path):
        paths = PathResolver(tmp_path)
        paths.ensure_structure()
        (paths.config_dir() / "preferences.json").write_text('{"portfolio": {"fy_start_month": 4}}')
        assert paths.get_preferences().portfolio.fy_start_month == 4
