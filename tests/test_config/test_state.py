"""Tests for ConfigLoader / ConfigState."""

from pathlib import Path

import pytest
import yaml

from tiered_collector.config.state import ConfigLoader, ConfigState, get_config
from tiered_collector.resilience.exceptions import ConfigurationError

REPO_CONFIG_DIR = Path(__file__).resolve().parents[2] / "config"

ENV_VARS = (
    "TIMESCALE_URL",
    "COLLECTOR_API_URL",
    "COLLECTOR_API_KEY",
    "LOG_LEVEL",
    "COLLECTOR_ENV",
    "COLLECTOR_CONFIG_DIR",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def write_yaml(path: Path, data) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(data), encoding="utf-8")


class TestDefaults:
    def test_empty_directory_gives_defaults(self, tmp_path):
        state = ConfigLoader(str(tmp_path)).load()

        assert [t.tier for t in state.tiers] == [1, 2, 3]
        assert [t.update_interval_seconds for t in state.tiers] == [60, 300, 3600]
        assert [t.max_assets for t in state.tiers] == [150, 350, 1000]
        assert state.orchestrator.max_in_flight_jobs == 10
        assert state.orchestrator.sub_batch_size == 5
        assert state.retry.max_attempts == 3
        assert state.circuit_breaker.failure_threshold == 5
        assert state.env == "dev"

    def test_value_objects(self):
        state = ConfigState()

        retry = state.to_retry_config()
        assert retry.max_delay == 30.0
        assert "RATE_LIMIT_ERROR" in retry.retryable_error_codes

        orchestrator = state.to_orchestrator_config()
        assert orchestrator.inter_batch_delay_seconds == 0.15
        assert orchestrator.count_lookback_seconds == 3600

        tiers = state.to_tier_configs()
        assert tiers[0].timeframes == ("1m",)
        assert tiers[2].retention_days == 60

        assert state.to_circuit_breaker_config().recovery_timeout == 60.0


class TestLoading:
    def test_repository_config_directory_is_valid(self):
        state = ConfigLoader(str(REPO_CONFIG_DIR), env="prod").load()

        assert [t.name for t in state.tiers] == ["Hot", "Active", "Established"]
        assert state.metrics.enabled is True
        assert state.database.assignments_table == "asset_tier_assignments"

    def test_env_overlay_merges_deeply(self, tmp_path):
        write_yaml(
            tmp_path / "collector.yaml",
            {"orchestrator": {"max_in_flight_jobs": 20, "sub_batch_size": 4}},
        )
        write_yaml(tmp_path / "env" / "staging.yaml", {"orchestrator": {"sub_batch_size": 2}})

        state = ConfigLoader(str(tmp_path), env="staging").load()

        assert state.orchestrator.max_in_flight_jobs == 20
        assert state.orchestrator.sub_batch_size == 2
        assert state.env == "staging"

    def test_environment_variable_overrides(self, tmp_path, monkeypatch):
        monkeypatch.setenv("TIMESCALE_URL", "postgresql://u:p@db:5432/x")
        monkeypatch.setenv("COLLECTOR_API_URL", "https://collector.internal/")
        monkeypatch.setenv("LOG_LEVEL", "WARNING")

        state = ConfigLoader(str(tmp_path)).load()

        assert state.database.url == "postgresql://u:p@db:5432/x"
        assert state.upstream.base_url == "https://collector.internal"
        assert state.logging.level == "WARNING"

    def test_env_name_from_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("COLLECTOR_ENV", "prod")

        assert ConfigLoader(str(tmp_path)).env == "prod"

    def test_get_config_uses_config_dir_variable(self, tmp_path, monkeypatch):
        write_yaml(tmp_path / "collector.yaml", {"retry": {"max_attempts": 5}})
        monkeypatch.setenv("COLLECTOR_CONFIG_DIR", str(tmp_path))

        assert get_config().retry.max_attempts == 5


class TestValidation:
    def test_invalid_value_raises_configuration_error(self, tmp_path):
        write_yaml(tmp_path / "collector.yaml", {"orchestrator": {"sub_batch_size": 0}})

        with pytest.raises(ConfigurationError) as exc_info:
            ConfigLoader(str(tmp_path)).load()

        assert any("sub_batch_size" in issue for issue in exc_info.value.issues)

    def test_inconsistent_tier_table(self, tmp_path):
        write_yaml(
            tmp_path / "tiers.yaml",
            {
                "tiers": [
                    {
                        "tier": 1,
                        "name": "Hot",
                        "timeframes": ["1m"],
                        "update_interval_seconds": 300,
                        "max_assets": 10,
                        "retention_days": 7,
                        "priority": 1,
                    },
                    {
                        "tier": 2,
                        "name": "Active",
                        "timeframes": ["5m"],
                        "update_interval_seconds": 60,
                        "max_assets": 10,
                        "retention_days": 3,
                        "priority": 2,
                    },
                ]
            },
        )

        with pytest.raises(ConfigurationError, match="Invalid tier configuration"):
            ConfigLoader(str(tmp_path)).load()

    def test_unknown_timeframe_rejected(self, tmp_path):
        write_yaml(
            tmp_path / "tiers.yaml",
            {
                "tiers": [
                    {
                        "tier": 1,
                        "name": "Hot",
                        "timeframes": ["1x"],
                        "update_interval_seconds": 60,
                        "max_assets": 10,
                        "retention_days": 7,
                        "priority": 1,
                    }
                ]
            },
        )

        with pytest.raises(ConfigurationError):
            ConfigLoader(str(tmp_path)).load()

    def test_malformed_yaml(self, tmp_path):
        (tmp_path / "collector.yaml").write_text("orchestrator: [unclosed", encoding="utf-8")

        with pytest.raises(ConfigurationError, match="Failed to load"):
            ConfigLoader(str(tmp_path)).load()

    def test_non_mapping_yaml(self, tmp_path):
        (tmp_path / "tiers.yaml").write_text("- 1\n- 2\n", encoding="utf-8")

        with pytest.raises(ConfigurationError, match="mapping"):
            ConfigLoader(str(tmp_path)).load()

    def test_database_url_scheme(self, tmp_path):
        write_yaml(tmp_path / "database.yaml", {"database": {"url": "mysql://x"}})

        with pytest.raises(ConfigurationError):
            ConfigLoader(str(tmp_path)).load()
