"""Tests for YAML settings loading."""

from decimal import Decimal
from pathlib import Path

import pytest
import yaml

from program_config import CONFIG_ENV_VAR, get_settings
from program_config.loader import compute_checksum, load_settings, parse_settings
from program_config.schema import AppSettings, FinanceSettings

EXAMPLE_SETTINGS = (
    Path(__file__).resolve().parents[2] / "program_config" / "settings.example.yaml"
)


class TestParseSettings:
    def test_empty_document_uses_defaults(self):
        assert parse_settings({}) == AppSettings()

    def test_partial_section(self):
        settings = parse_settings({"finance": {"tax_rate": "0.07"}})

        assert settings.finance.tax_rate == Decimal("0.07")
        assert settings.finance.margin_floor == Decimal("0")
        assert settings.imports.batch_size == 100

    def test_float_yaml_values_parse_exactly(self):
        settings = parse_settings({"finance": {"tax_rate": 0.0825}})
        assert settings.finance.tax_rate == Decimal("0.0825")

    def test_request_timeout(self):
        settings = parse_settings({"request": {"timeout_seconds": 5}})
        assert settings.request.timeout_seconds == 5.0

    def test_first_data_row_follows_header(self):
        settings = parse_settings({"imports": {"header_row": 3}})
        assert settings.imports.first_data_row == 4

    @pytest.mark.parametrize(
        "data",
        [
            {"finanse": {}},
            {"finance": {"tax_rat": "0.1"}},
            {"finance": {"tax_rate": "ten percent"}},
            {"imports": {"batch_size": 0}},
            {"imports": {"batch_size": "100"}},
            {"request": {"timeout_seconds": -1}},
            {"finance": ["tax_rate"]},
        ],
    )
    def test_rejects_invalid_documents(self, data):
        with pytest.raises(ValueError):
            parse_settings(data)


class TestLoadSettings:
    def test_example_file_matches_defaults(self):
        assert load_settings(EXAMPLE_SETTINGS) == AppSettings()

    def test_load_from_file(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text(yaml.safe_dump({"imports": {"batch_size": 25}}))

        assert load_settings(path).imports.batch_size == 25

    def test_non_mapping_document(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("- just\n- a list\n")

        with pytest.raises(ValueError):
            load_settings(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_settings(tmp_path / "absent.yaml")

    def test_get_settings_reads_env_var(self, tmp_path, monkeypatch):
        path = tmp_path / "settings.yaml"
        path.write_text(yaml.safe_dump({"finance": {"active_margin_floor": "0.1"}}))
        monkeypatch.setenv(CONFIG_ENV_VAR, str(path))

        assert get_settings().finance.active_margin_floor == Decimal("0.1")

    def test_get_settings_defaults_without_env(self, monkeypatch):
        monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
        assert get_settings() == AppSettings()


class TestChecksum:
    def test_stable_for_equal_settings(self):
        assert compute_checksum(AppSettings()) == compute_checksum(AppSettings())

    def test_changes_with_values(self):
        changed = AppSettings(finance=FinanceSettings(tax_rate=Decimal("0.09")))
        assert compute_checksum(changed) != compute_checksum(AppSettings())
