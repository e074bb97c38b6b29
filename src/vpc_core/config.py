"""Machine configuration.

MachineConfig carries the tunables of the virtual PC. Defaults match the
stock machine; a YAML file can override any of them:

    memory_size: 1024
    clock_speeds: {1x: 1000, 2x: 500, MAX: 100}
    default_clock: 500
    boot_delay: 3.5
    user: iffi
"""

from dataclasses import dataclass, field, fields
from typing import Any, Dict

import yaml

from .isa import MEMORY_SIZE, REGISTER_COUNT
from .state import DEFAULT_CLOCK_PERIOD, DEFAULT_TEMPERATURE, KERNEL_LOG_CAPACITY


class ConfigError(ValueError):
    """Raised for malformed configuration files."""


@dataclass(frozen=True)
class MachineConfig:
    """Tunables for the engine and clock driver.

    Attributes:
        memory_size: Words in the memory bank
        register_count: Number of general purpose registers (fixed at 8)
        log_capacity: Kernel log ring size
        clock_speeds: Label -> tick period (ms) for the selectable speeds
        default_clock: Tick period selected at power-on
        boot_delay: Seconds spent in BOOTING after power-on
        user: Session name shown in the boot log
        initial_temperature: Gauge reading at power-on
        min_temperature: Lower clamp for the gauge
        max_temperature: Upper clamp for the gauge
    """
    memory_size: int = MEMORY_SIZE
    register_count: int = REGISTER_COUNT
    log_capacity: int = KERNEL_LOG_CAPACITY
    clock_speeds: Dict[str, int] = field(
        default_factory=lambda: {"1x": 1000, "2x": 500, "MAX": 100}
    )
    default_clock: int = DEFAULT_CLOCK_PERIOD
    boot_delay: float = 3.5
    user: str = "iffi"
    initial_temperature: float = DEFAULT_TEMPERATURE
    min_temperature: float = 30.0
    max_temperature: float = 85.0

    def validate(self) -> None:
        """Check internal consistency.

        Raises:
            ConfigError: If a value is out of range
        """
        if self.register_count != REGISTER_COUNT:
            raise ConfigError(f"register_count must be {REGISTER_COUNT}")
        if self.memory_size <= 0:
            raise ConfigError("memory_size must be positive")
        if self.log_capacity <= 0:
            raise ConfigError("log_capacity must be positive")
        if not self.clock_speeds:
            raise ConfigError("clock_speeds must not be empty")
        if self.default_clock not in self.clock_speeds.values():
            raise ConfigError(f"default_clock {self.default_clock} is not a selectable speed")
        if self.boot_delay < 0:
            raise ConfigError("boot_delay must not be negative")
        if not self.min_temperature <= self.initial_temperature <= self.max_temperature:
            raise ConfigError("initial_temperature outside temperature bounds")


def load_config(path: str) -> MachineConfig:
    """Load a MachineConfig from a YAML file.

    Missing keys fall back to defaults.

    Raises:
        ConfigError: On unknown keys, bad values or unreadable YAML
    """
    with open(path, 'r') as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    return config_from_dict(data or {})


def config_from_dict(data: Dict[str, Any]) -> MachineConfig:
    if not isinstance(data, dict):
        raise ConfigError("Configuration root must be a mapping")

    known = {f.name for f in fields(MachineConfig)}
    unknown = set(data) - known
    if unknown:
        raise ConfigError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")

    values: Dict[str, Any] = {}
    for key, value in data.items():
        if key in ("memory_size", "register_count", "log_capacity", "default_clock"):
            values[key] = _parse_int(value)
        elif key == "clock_speeds":
            if not isinstance(value, dict):
                raise ConfigError("clock_speeds must be a mapping of label to period")
            values[key] = {str(label): _parse_int(ms) for label, ms in value.items()}
        elif key == "user":
            values[key] = str(value)
        else:
            try:
                values[key] = float(value)
            except (TypeError, ValueError):
                raise ConfigError(f"Invalid number for {key}: {value!r}") from None

    config = MachineConfig(**values)
    config.validate()
    return config


def _parse_int(value: Any) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"Invalid integer format: {value}")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            if value.lower().startswith("0x"):
                return int(value, 16)
            return int(value)
        except ValueError:
            pass
    raise ConfigError(f"Invalid integer format: {value}")
