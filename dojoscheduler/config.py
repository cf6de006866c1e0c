"""
Configuration management using Pydantic models loaded from YAML.
"""

from pathlib import Path
from typing import Dict, List, Optional

import pendulum
import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

DEFAULT_COHORTS = [
    "0-300", "300-400", "400-500", "500-600", "600-700", "700-800",
    "800-900", "900-1000", "1000-1100", "1100-1200", "1200-1300",
    "1300-1400", "1400-1500", "1500-1600", "1600-1700", "1700-1800",
    "1800-1900", "1900-2000", "2000-2100", "2100-2200", "2200-2300",
    "2300-2400", "2400+",
]

DEFAULT_TYPES = [
    "MIDDLEGAME_SPARRING",
    "ENDGAME_SPARRING",
    "ROOK_ENDGAME_PROGRESSION",
    "CLASSICAL_GAME",
    "ANALYZE_OWN_GAME",
    "ANALYZE_CLASSICS",
    "GROUP_STUDY",
]


def _dedupe_tags(value: List[str], label: str) -> List[str]:
    seen: set[str] = set()
    deduped: List[str] = []
    for tag in value:
        tag = tag.strip()
        if not tag:
            raise ValueError(f"{label} must not contain empty values")
        if tag not in seen:
            deduped.append(tag)
            seen.add(tag)
    if not deduped:
        raise ValueError(f"{label} must contain at least one value")
    return deduped


class TableNames(BaseModel):
    """Names of the primary tables. Empty values are derived from the stage."""
    users: str = ""
    availabilities: str = ""
    meetings: str = ""

    def with_stage(self, stage: str) -> "TableNames":
        return TableNames(
            users=self.users or f"{stage}-users",
            availabilities=self.availabilities or f"{stage}-availabilities",
            meetings=self.meetings or f"{stage}-meetings",
        )

    def key_schema(self) -> Dict[str, List[str]]:
        """Key attribute names per table."""
        return {
            self.users: ["username"],
            self.availabilities: ["owner", "id"],
            self.meetings: ["id"],
        }


class StatisticsConfig(BaseModel):
    """Behaviour of the best-effort statistics updates."""
    create_missing_buckets: bool = False
    async_updates: bool = True
    max_workers: int = 4

    @field_validator("max_workers")
    @classmethod
    def validate_workers(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("max_workers must be greater than zero")
        return value


class AppConfig(BaseModel):
    """Application configuration."""
    stage: str = "dev"
    region: str = "us-east-1"
    endpoint_url: Optional[str] = None  # e.g. http://localhost:8000 for DynamoDB Local
    aws_profile: Optional[str] = None
    tables: TableNames = Field(default_factory=TableNames)
    cohorts: List[str] = Field(default_factory=lambda: list(DEFAULT_COHORTS))
    types: List[str] = Field(default_factory=lambda: list(DEFAULT_TYPES))
    statistics: StatisticsConfig = Field(default_factory=StatisticsConfig)
    timezone: str = "UTC"
    log_level: str = "WARNING"

    @field_validator("stage")
    @classmethod
    def validate_stage(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("stage must not be empty")
        return value.strip()

    @field_validator("cohorts")
    @classmethod
    def validate_cohorts(cls, value: List[str]) -> List[str]:
        return _dedupe_tags(value, "cohorts")

    @field_validator("types")
    @classmethod
    def validate_types(cls, value: List[str]) -> List[str]:
        return _dedupe_tags(value, "types")

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, value: str) -> str:
        try:
            pendulum.timezone(value)
        except (ValueError, KeyError) as exc:
            raise ValueError(f"Unknown timezone: {value}") from exc
        return value

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {value}")
        return level

    @model_validator(mode="after")
    def derive_table_names(self) -> "AppConfig":
        """Fill in table names that were not configured explicitly."""
        self.tables = self.tables.with_stage(self.stage)
        return self

    @classmethod
    def load_from_yaml(cls, config_path: Path) -> "AppConfig":
        """
        Load configuration from YAML file.

        Args:
            config_path: Path to the YAML config file

        Returns:
            AppConfig instance

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If config is invalid
        """
        if not config_path.exists():
            raise FileNotFoundError(
                f"Config file not found: {config_path}\n"
                f"Please create a config.yaml file. See config.example.yaml for reference."
            )

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ValueError(f"Invalid YAML in {config_path}: {exc}") from exc

        if not isinstance(data, dict):
            raise ValueError("Config file must contain a mapping at the root level.")

        return cls(**data)


def get_default_config_path() -> Path:
    """Get the default configuration file path."""
    # Look for config.yaml in current directory
    current_dir = Path.cwd()
    config_path = current_dir / "config.yaml"

    if not config_path.exists():
        # Try in the project root (parent of the package)
        project_root = Path(__file__).parent.parent
        config_path = project_root / "config.yaml"

    return config_path
