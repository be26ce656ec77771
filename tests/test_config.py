"""Tests for config loading and validation."""

from pathlib import Path

import pytest
from pydantic import ValidationError as PydanticValidationError

from cli.config import find_config, get_paths, load_config, load_config_model
from cli.config_models import AlphaConfig
from shared_types import StorageBackend


class TestAlphaConfig:
    def test_defaults(self):
        config = AlphaConfig()
        assert config.predictions.window_hours == 24
        assert config.predictions.moon_threshold == 15.0
        assert config.predictions.leaderboard_size == 100
        assert config.storage.backend == StorageBackend.SQLITE
        assert config.storage.fallback_to_memory is True
        assert config.cache.default_ttl_seconds == 300
        assert config.rate_limits.coingecko.requests_per_second == 0.5
        assert (config.market.pump_threshold, config.market.dump_threshold) == (15.0, -15.0)

    def test_paths_expanded(self):
        config = AlphaConfig()
        assert "~" not in str(config.paths.db_path)

    @pytest.mark.parametrize(
        "section",
        [
            {"predictions": {"window_hours": 0}},
            {"predictions": {"moon_threshold": -5}},
            {"predictions": {"leaderboard_size": -1}},
            {"storage": {"backend": "redis"}},
            {"logging": {"level": "LOUD"}},
            {"market": {"pump_threshold": 0}},
            {"market": {"dump_threshold": 5}},
        ],
    )
    def test_invalid_values_rejected(self, section):
        with pytest.raises(PydanticValidationError):
            AlphaConfig.from_dict(section)

    def test_log_level_normalized(self):
        assert AlphaConfig.from_dict({"logging": {"level": "debug"}}).logging.level == "DEBUG"

    def test_api_key_env_expansion(self, monkeypatch):
        monkeypatch.setenv("CG_KEY", "CG-fromenv")
        config = AlphaConfig.from_dict({"market": {"coingecko_api_key": "${CG_KEY}"}})
        assert config.market.coingecko_api_key == "CG-fromenv"

    def test_to_dict_sections(self):
        data = AlphaConfig().to_dict()
        assert set(data) == {
            "paths",
            "storage",
            "predictions",
            "cache",
            "market",
            "rate_limits",
            "retry",
            "logging",
        }


class TestLoading:
    def test_load_from_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "storage:\n  backend: memory\npredictions:\n  window_hours: 12\n"
            f"paths:\n  db_path: {tmp_path / 'x.db'}\n"
        )
        config = load_config(path)
        assert config["storage"]["backend"] == StorageBackend.MEMORY
        assert config["predictions"]["window_hours"] == 12
        assert get_paths(config)["db_path"] == tmp_path / "x.db"

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("predictions: [unclosed")
        with pytest.raises(ValueError, match="Invalid YAML"):
            load_config_model(path)

    def test_invalid_values(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("predictions:\n  window_hours: -1\n")
        with pytest.raises(ValueError, match="Config validation failed"):
            load_config_model(path)

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("")
        assert load_config_model(path).predictions.window_hours == 24

    def test_env_var_takes_precedence(self, tmp_path, monkeypatch):
        path = tmp_path / "custom.yaml"
        path.write_text("{}")
        monkeypatch.setenv("ALPHA_CONFIG", str(path))
        assert find_config() == path

    def test_get_paths_defaults(self):
        paths = get_paths({})
        assert paths["db_path"] == Path("~/alphascroll/alpha.db").expanduser()
        assert paths["log_file"].name == "alpha.log"
