"""Tests for environment-driven settings."""

import pytest

from network_settings import Settings

class TestSettings:
    def test_defaults(self):
        settings = Settings()
        assert settings.poll_interval == 3600.0
        assert settings.refresh_timeout == 600.0
        assert settings.stop_timeout == 5.0
        assert settings.collapse_threshold == 5
        assert settings.max_players == 15
        assert settings.approximate is False

    def test_from_env_mapping(self):
        settings = Settings.from_env({
            "ATTRIBUTION_POLL_INTERVAL": "60",
            "ATTRIBUTION_COLLAPSE_THRESHOLD": "3",
            "ATTRIBUTION_APPROXIMATE": "yes",
            "ATTRIBUTION_OPERATOR_UPTIME": "0.95",
            "ATTRIBUTION_SEED": " ",
            "UNRELATED": "1",
        })
        assert settings.poll_interval == 60.0
        assert settings.collapse_threshold == 3
        assert settings.approximate is True
        assert settings.operator_uptime == 0.95
        assert settings.seed == 0

    def test_invalid_value(self):
        with pytest.raises(ValueError, match="ATTRIBUTION_MAX_PLAYERS"):
            Settings.from_env({"ATTRIBUTION_MAX_PLAYERS": "many"})

    def test_invalid_bool(self):
        with pytest.raises(ValueError, match="not a boolean"):
            Settings.from_env({"ATTRIBUTION_APPROXIMATE": "maybe"})

    @pytest.mark.parametrize("field, value", [
        ("poll_interval", 0),
        ("operator_uptime", 1.5),
        ("min_demand_weight", 0),
        ("max_players", 0),
        ("contiguity_bonus", -1.0),
    ])
    def test_validation(self, field, value):
        with pytest.raises(ValueError):
            Settings(**{field: value})

    def test_dotenv_file(self, tmp_path, monkeypatch):
        env_file = tmp_path / ".env"
        env_file.write_text("ATTRIBUTION_SAMPLES=123\nATTRIBUTION_LATENCY_SCALE=50\n")
        # Register the variables so monkeypatch removes whatever load_dotenv sets
        for name in ("ATTRIBUTION_SAMPLES", "ATTRIBUTION_LATENCY_SCALE"):
            monkeypatch.setenv(name, "")
            monkeypatch.delenv(name)

        settings = Settings.from_env(dotenv_path=str(env_file))
        assert settings.samples == 123
        assert settings.latency_scale == 50.0

    def test_process_env_wins_over_dotenv(self, tmp_path, monkeypatch):
        env_file = tmp_path / ".env"
        env_file.write_text("ATTRIBUTION_SAMPLES=123\n")
        monkeypatch.setenv("ATTRIBUTION_SAMPLES", "7")
        assert Settings.from_env(dotenv_path=str(env_file)).samples == 7

    def test_simulate_options(self):
        options = Settings(max_players=10, seed=4).simulate_options()
        assert options == dict(max_players=10, approximate=False, samples=2000, seed=4, latency_scale=100.0)
