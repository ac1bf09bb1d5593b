"""Smoke tests for the simulator configuration in sim/config.py."""

import importlib

import pytest

from sim import config


@pytest.fixture
def reload_config(monkeypatch):
    """Reload sim.config under patched environment, restoring it afterwards."""

    def _reload(**env):
        for key, value in env.items():
            monkeypatch.setenv(key, value)
        return importlib.reload(config)

    yield _reload
    monkeypatch.undo()
    importlib.reload(config)


class TestConfigSmoke:
    """Defaults are importable and sane."""

    def test_defaults(self):
        assert config.DEFAULT_TRIALS > 0
        assert config.DEFAULT_WORKERS >= 1
        assert config.DEFAULT_POOL_MODE in ("thread", "process")
        assert config.DEFAULT_MAX_ROUNDS >= 1
        assert config.DEFAULT_TURN_SLOTS[0] == "action"
        assert config.COUNTER_CEILING == 2 ** 64 - 1

    def test_configure_logging_accepts_names(self):
        config.configure_logging("debug")
        config.configure_logging()


class TestEnvironmentOverrides:
    def test_numeric_overrides(self, reload_config):
        cfg = reload_config(ENCOUNTER_SIM_TRIALS="25", ENCOUNTER_SIM_WORKERS="3", ENCOUNTER_SIM_MAX_ROUNDS="7")
        assert cfg.DEFAULT_TRIALS == 25
        assert cfg.DEFAULT_WORKERS == 3
        assert cfg.DEFAULT_MAX_ROUNDS == 7

    def test_turn_slots_override(self, reload_config):
        cfg = reload_config(ENCOUNTER_SIM_TURN_SLOTS="action, reaction,")
        assert cfg.DEFAULT_TURN_SLOTS == ("action", "reaction")

    @pytest.mark.parametrize("value,expected", [("true", True), ("1", True), ("off", False)])
    def test_decision_logging_flag(self, reload_config, value, expected):
        cfg = reload_config(ENCOUNTER_SIM_DECISION_LOGGING=value)
        assert cfg.DEFAULT_DECISION_LOGGING is expected
