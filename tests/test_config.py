"""
Tests for configuration loading.
"""

import pytest

from dojoscheduler.config import DEFAULT_COHORTS, AppConfig, StatisticsConfig, TableNames


class TestAppConfig:
    """Tests for AppConfig."""

    def test_defaults(self):
        config = AppConfig()

        assert config.stage == "dev"
        assert config.tables == TableNames(
            users="dev-users",
            availabilities="dev-availabilities",
            meetings="dev-meetings",
        )
        assert config.cohorts == DEFAULT_COHORTS
        assert config.statistics.create_missing_buckets is False

    def test_load_from_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "stage: prod\n"
            "region: eu-central-1\n"
            "endpoint_url: http://localhost:8000\n"
            "tables:\n"
            "  meetings: legacy-meetings\n"
            "cohorts: ['1200-1400', ' 1400-1600', '1200-1400']\n"
            "types: [ENDGAME]\n"
            "timezone: Europe/Berlin\n"
            "log_level: info\n"
            "statistics:\n"
            "  create_missing_buckets: true\n"
            "  async_updates: false\n",
            encoding="utf-8",
        )

        config = AppConfig.load_from_yaml(path)

        assert config.region == "eu-central-1"
        assert config.endpoint_url == "http://localhost:8000"
        assert config.tables.users == "prod-users"
        assert config.tables.meetings == "legacy-meetings"
        assert config.cohorts == ["1200-1400", "1400-1600"]
        assert config.log_level == "INFO"
        assert config.statistics.create_missing_buckets is True
        assert config.statistics.async_updates is False

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("", encoding="utf-8")

        assert AppConfig.load_from_yaml(path).stage == "dev"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError, match="Config file not found"):
            AppConfig.load_from_yaml(tmp_path / "missing.yaml")

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("stage: [unclosed\n", encoding="utf-8")

        with pytest.raises(ValueError, match="Invalid YAML"):
            AppConfig.load_from_yaml(path)

    def test_root_must_be_a_mapping(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")

        with pytest.raises(ValueError, match="mapping"):
            AppConfig.load_from_yaml(path)

    @pytest.mark.parametrize(
        "fields",
        [
            {"timezone": "Mars/Olympus"},
            {"log_level": "LOUD"},
            {"stage": "  "},
            {"cohorts": []},
            {"types": ["ENDGAME", ""]},
        ],
    )
    def test_invalid_values(self, fields):
        with pytest.raises(ValueError):
            AppConfig(**fields)

    def test_statistics_workers_must_be_positive(self):
        with pytest.raises(ValueError, match="greater than zero"):
            StatisticsConfig(max_workers=0)

    def test_key_schema(self):
        tables = TableNames().with_stage("test")

        assert tables.key_schema() == {
            "test-users": ["username"],
            "test-availabilities": ["owner", "id"],
            "test-meetings": ["id"],
        }
