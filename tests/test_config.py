"""Tests for configuration loading and validation."""

from pathlib import Path

import pytest
import yaml

from ledger_recon.config import (
    MatchingConfig,
    ReconConfig,
    generate_default_config,
    get_default_config,
    load_config,
)
from ledger_recon.utils.exceptions import ConfigurationError


class TestLoadConfig:
    def test_defaults_without_file(self):
        config = load_config(None)

        assert config.matching.date_slack_days == 3
        assert config.matching.auto_accept_threshold == 60.0
        assert config.duplicates.similarity_method == "sequence"
        assert config.report.currency_symbol == "$"
        assert config.config_file_path is None

    def test_defaults_match_model(self):
        assert ReconConfig(**get_default_config()) == ReconConfig()

    def test_missing_file_uses_defaults(self, tmp_path: Path):
        config = load_config(tmp_path / "absent.yaml")
        assert config.config_file_path is None

    def test_partial_override_deep_merges(self, tmp_path: Path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.dump({"matching": {"date_slack_days": 5}, "report": {"currency_symbol": "€"}}))

        config = load_config(path)

        assert config.matching.date_slack_days == 5
        assert config.matching.amount_match_score == 60.0
        assert config.report.currency_symbol == "€"
        assert config.report.sheets.summary.name == "Summary"
        assert config.config_file_path == str(path)

    def test_invalid_yaml(self, tmp_path: Path):
        path = tmp_path / "config.yaml"
        path.write_text("matching: [unclosed")
        with pytest.raises(ConfigurationError):
            load_config(path)

    def test_non_mapping_root(self, tmp_path: Path):
        path = tmp_path / "config.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigurationError):
            load_config(path)

    @pytest.mark.parametrize(
        "override",
        [
            {"matching": {"date_slack_days": -1}},
            {"duplicates": {"similarity_method": "soundex"}},
            {"duplicates": {"similarity_threshold": 1.5}},
            {"matching": {"amount_match_score": 95}},
            {"logging": {"level": "chatty"}},
        ],
    )
    def test_invalid_values(self, tmp_path: Path, override):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.dump(override))
        with pytest.raises(ConfigurationError):
            load_config(path)

    def test_weights_must_fit_under_reference_score(self):
        with pytest.raises(ValueError):
            MatchingConfig(reference_match_score=50)


class TestGenerateConfig:
    def test_round_trip(self, tmp_path: Path):
        path = tmp_path / "nested" / "config.yaml"
        generate_default_config(path)

        assert path.read_text().startswith("# Ledger reconciliation")
        assert load_config(path).matching == ReconConfig().matching
