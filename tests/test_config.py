"""Tests for MachineConfig and the YAML loader."""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import pytest
from vpc_core import ClockDriver, RunStatus
from vpc_core.config import ConfigError, MachineConfig, config_from_dict, load_config


class TestDefaults:
    def test_stock_machine(self):
        config = MachineConfig()
        assert config.memory_size == 1024
        assert config.register_count == 8
        assert config.log_capacity == 50
        assert config.clock_speeds == {"1x": 1000, "2x": 500, "MAX": 100}
        assert config.default_clock == 500
        assert config.boot_delay == 3.5
        config.validate()


class TestLoadConfig:
    def test_load_yaml(self, tmp_path):
        path = tmp_path / "machine.yaml"
        path.write_text(
            "memory_size: 0x800\n"
            "boot_delay: 0\n"
            "user: ada\n"
            "clock_speeds:\n"
            "  slow: 2000\n"
            "  fast: '0x32'\n"
            "default_clock: 2000\n"
        )
        config = load_config(str(path))
        assert config.memory_size == 2048
        assert config.boot_delay == 0.0
        assert config.user == "ada"
        assert config.clock_speeds == {"slow": 2000, "fast": 50}
        assert config.default_clock == 2000

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_config(str(path)) == MachineConfig()

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("memory_size: [1, 2\n")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_config(str(path))

    def test_config_drives_the_machine(self, tmp_path):
        path = tmp_path / "machine.yaml"
        path.write_text("boot_delay: 0\nuser: ada\nmemory_size: 64\n")
        driver = ClockDriver(config=load_config(str(path)))
        driver.power_on()
        assert driver.status is RunStatus.IDLE
        assert len(driver.memory) == 64
        assert driver.kernel_log.lines[-1] == "[SYS_CALL] INIT_USER_SESSION(ada)"


class TestConfigFromDict:
    def test_unknown_key(self):
        with pytest.raises(ConfigError, match="Unknown configuration keys: turbo"):
            config_from_dict({"turbo": True})

    def test_root_must_be_mapping(self):
        with pytest.raises(ConfigError):
            config_from_dict([1, 2])

    def test_bad_integer(self):
        with pytest.raises(ConfigError, match="Invalid integer format"):
            config_from_dict({"memory_size": "lots"})

    def test_bool_is_not_an_integer(self):
        with pytest.raises(ConfigError):
            config_from_dict({"log_capacity": True})

    def test_bad_float(self):
        with pytest.raises(ConfigError, match="boot_delay"):
            config_from_dict({"boot_delay": "soon"})

    def test_default_clock_must_be_selectable(self):
        with pytest.raises(ConfigError, match="not a selectable speed"):
            config_from_dict({"default_clock": 250})

    def test_register_count_is_fixed(self):
        with pytest.raises(ConfigError, match="register_count"):
            config_from_dict({"register_count": 16})

    def test_temperature_bounds(self):
        with pytest.raises(ConfigError, match="temperature"):
            config_from_dict({"initial_temperature": 90})

    def test_config_error_is_value_error(self):
        assert issubclass(ConfigError, ValueError)
