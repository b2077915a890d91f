"""
Tests for engine settings (``incentive_config``).

Covers the packaged defaults, YAML files, environment overrides and
rejection of unknown or invalid values.
"""

from pathlib import Path

import pytest
import yaml

from incentive_config import (
    CONFIG_PATH_ENV,
    DATABASE_URL_ENV,
    IncentiveSettings,
    get_active_config,
)
from incentive_config.loader import load_yaml_file, parse_settings


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch):
    monkeypatch.delenv(CONFIG_PATH_ENV, raising=False)
    monkeypatch.delenv(DATABASE_URL_ENV, raising=False)


def _write(tmp_path: Path, data: dict) -> Path:
    path = tmp_path / "incentives.yaml"
    path.write_text(yaml.safe_dump(data))
    return path


class TestDefaults:

    def test_packaged_defaults_match_schema_defaults(self):
        settings = get_active_config()
        assert settings == IncentiveSettings()

    def test_default_values(self):
        settings = IncentiveSettings()
        assert settings.claim_number_prefix == "CLM"
        assert settings.claim_sequence_width == 5
        assert settings.money_decimal_places == 2
        assert settings.default_period_type == "monthly"
        assert settings.counted_order_statuses == ("delivered", "shipped")
        assert settings.mark_claim_paid_on_schedule is True


class TestLoading:

    def test_explicit_path(self, tmp_path):
        path = _write(tmp_path, {"incentives": {"claim_number_prefix": "COOP", "log_level": "debug"}})
        settings = get_active_config(path)
        assert settings.claim_number_prefix == "COOP"
        assert settings.log_level == "DEBUG"

    def test_path_from_environment(self, tmp_path, monkeypatch):
        path = _write(tmp_path, {"default_period_type": "quarterly"})
        monkeypatch.setenv(CONFIG_PATH_ENV, str(path))
        assert get_active_config().default_period_type == "quarterly"

    def test_database_url_override(self, monkeypatch):
        monkeypatch.setenv(DATABASE_URL_ENV, "postgresql://incentives@db/incentives")
        assert get_active_config().database_url == "postgresql://incentives@db/incentives"

    def test_counted_statuses_become_tuple(self):
        settings = parse_settings({"counted_order_statuses": ["invoiced"]})
        assert settings.counted_order_statuses == ("invoiced",)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_config(tmp_path / "missing.yaml")

    def test_non_mapping_document(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ValueError):
            load_yaml_file(path)


class TestValidation:

    def test_unknown_key_rejected(self):
        with pytest.raises(ValueError, match="Unknown settings keys"):
            parse_settings({"incentives": {"claim_prefix": "X"}})

    @pytest.mark.parametrize(
        "values",
        [
            {"money_decimal_places": 12},
            {"claim_number_prefix": " "},
            {"claim_sequence_width": 0},
            {"default_period_type": "weekly"},
            {"counted_order_statuses": []},
            {"log_level": "chatty"},
            {"database_url": ""},
        ],
    )
    def test_invalid_values_rejected(self, values):
        with pytest.raises(ValueError):
            parse_settings(values)
