"""Configuration loader and validation for reconciliation settings."""

from pathlib import Path
from typing import Any, Literal, Optional
import logging

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .utils.exceptions import ConfigurationError
from .utils.logging_config import resolve_level

logger = logging.getLogger(__name__)


class MatchingConfig(BaseModel):
    """Scoring and assignment settings for automatic statement matching."""

    # Posting-date drift tolerated around the session's date range
    date_slack_days: int = Field(default=3, ge=0)
    # A candidate is auto-accepted only when its score is strictly above this
    auto_accept_threshold: float = Field(default=60.0, ge=0, le=100)
    reference_match_score: float = 100.0
    amount_match_score: float = Field(default=60.0, ge=0)
    date_proximity_weight: float = Field(default=30.0, ge=0)
    description_weight: float = Field(default=10.0, ge=0)
    normalize_references: bool = True
    reference_normalize_pattern: str = "[^a-zA-Z0-9]"

    @model_validator(mode="after")
    def _scores_fit_reference(self) -> "MatchingConfig":
        ceiling = self.amount_match_score + self.date_proximity_weight + self.description_weight
        if ceiling > self.reference_match_score:
            raise ValueError(
                "amount, date and description weights must not exceed reference_match_score"
            )
        return self


class DuplicateConfig(BaseModel):
    """Settings for duplicate detection among ledger transactions."""

    date_window_days: int = Field(default=2, ge=0)
    similarity_method: Literal["sequence", "token"] = "sequence"
    similarity_threshold: float = Field(default=0.8, ge=0, le=1)
    # Groups at or above this confidence are merged by auto_merge
    auto_merge_confidence: float = Field(default=90.0, ge=0, le=100)


class SheetConfig(BaseModel):
    """Configuration for a report sheet."""

    enabled: bool = True
    name: str


class SheetsConfig(BaseModel):
    """Configuration for all report sheets."""

    summary: SheetConfig = Field(default_factory=lambda: SheetConfig(name="Summary"))
    matched: SheetConfig = Field(default_factory=lambda: SheetConfig(name="Matched Transactions"))
    unmatched_statement: SheetConfig = Field(
        default_factory=lambda: SheetConfig(name="Unmatched Statement")
    )
    unmatched_ledger: SheetConfig = Field(
        default_factory=lambda: SheetConfig(name="Unmatched Ledger")
    )
    adjustments: SheetConfig = Field(default_factory=lambda: SheetConfig(name="Adjustments"))
    audit_trail: SheetConfig = Field(default_factory=lambda: SheetConfig(name="Audit Trail"))


class ReportConfig(BaseModel):
    """Configuration for formatted output."""

    currency_code: str = "USD"
    currency_symbol: str = "$"
    filename_template: str = "reconciliation_report_{date}_{time}.xlsx"
    sheets: SheetsConfig = Field(default_factory=SheetsConfig)


class LoggingConfig(BaseModel):
    """Configuration for logging."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file: Optional[str] = None
    # Separate rotating file for match, merge and session events
    audit_file: Optional[str] = None

    @field_validator("level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        resolve_level(value)
        return value.upper()


class ReconConfig(BaseModel):
    """Main configuration model for reconciliation and merge."""

    matching: MatchingConfig = Field(default_factory=MatchingConfig)
    duplicates: DuplicateConfig = Field(default_factory=DuplicateConfig)
    report: ReportConfig = Field(default_factory=ReportConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    config_file_path: Optional[str] = None


def get_default_config() -> dict[str, Any]:
    """Return the default configuration as a dictionary."""
    return {
        "matching": {
            "date_slack_days": 3,
            "auto_accept_threshold": 60.0,
            "reference_match_score": 100.0,
            "amount_match_score": 60.0,
            "date_proximity_weight": 30.0,
            "description_weight": 10.0,
            "normalize_references": True,
            "reference_normalize_pattern": "[^a-zA-Z0-9]",
        },
        "duplicates": {
            "date_window_days": 2,
            "similarity_method": "sequence",
            "similarity_threshold": 0.8,
            "auto_merge_confidence": 90.0,
        },
        "report": {
            "currency_code": "USD",
            "currency_symbol": "$",
            "filename_template": "reconciliation_report_{date}_{time}.xlsx",
            "sheets": {
                "summary": {"enabled": True, "name": "Summary"},
                "matched": {"enabled": True, "name": "Matched Transactions"},
                "unmatched_statement": {"enabled": True, "name": "Unmatched Statement"},
                "unmatched_ledger": {"enabled": True, "name": "Unmatched Ledger"},
                "adjustments": {"enabled": True, "name": "Adjustments"},
                "audit_trail": {"enabled": True, "name": "Audit Trail"},
            },
        },
        "logging": {
            "level": "INFO",
            "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            "file": None,
            "audit_file": None,
        },
    }


def load_config(config_path: Optional[Path] = None) -> ReconConfig:
    """
    Load configuration from a YAML file or use defaults.

    Args:
        config_path: Path to YAML configuration file (optional)

    Returns:
        ReconConfig object with loaded or default settings

    Raises:
        ConfigurationError: If the file is not valid YAML or fails validation
    """
    config_dict = get_default_config()

    if config_path and config_path.exists():
        logger.info(f"Loading configuration from: {config_path}")
        try:
            with open(config_path, "r") as f:
                user_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e

        if not isinstance(user_config, dict):
            raise ConfigurationError(f"Configuration root must be a mapping: {config_path}")

        # Deep merge user config into defaults
        config_dict = _deep_merge(config_dict, user_config)
        config_dict["config_file_path"] = str(config_path)
    else:
        logger.info("Using default configuration")

    try:
        return ReconConfig(**config_dict)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e


def _deep_merge(base: dict, override: dict) -> dict:
    """
    Deep merge two dictionaries.

    Args:
        base: Base dictionary
        override: Dictionary to merge on top

    Returns:
        Merged dictionary
    """
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def generate_default_config(output_path: Path) -> None:
    """
    Generate a default configuration file.

    Args:
        output_path: Path to write the configuration file
    """
    config_dict = get_default_config()

    yaml_content = """# Ledger reconciliation and duplicate-merge configuration
# Generated configuration file - customize as needed

"""
    yaml_content += yaml.dump(config_dict, default_flow_style=False, sort_keys=False)

    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w") as f:
        f.write(yaml_content)

    logger.info(f"Generated configuration file: {output_path}")
