from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from procbatch.config.errors import ConfigError


def _require(d: Mapping[str, Any], key: str, *, path: str) -> Any:
    if key not in d:
        raise ConfigError("missing required field", path=f"{path}.{key}" if path else key)
    return d[key]


@dataclass(frozen=True)
class UnitSpec:
    unit_id: int | str
    command: str | tuple[str, ...]

    @classmethod
    def from_mapping(cls, raw: Any, *, path: str) -> "UnitSpec":
        if not isinstance(raw, Mapping):
            raise ConfigError("unit entry must be a mapping", path=path)

        unit_id = _require(raw, "id", path=path)
        if isinstance(unit_id, bool) or not isinstance(unit_id, (int, str)):
            raise ConfigError("must be an int or a string", path=f"{path}.id")

        has_command = "command" in raw
        has_argv = "argv" in raw
        if has_command == has_argv:
            raise ConfigError("exactly one of 'command' or 'argv' is required", path=path)

        if has_command:
            command = raw["command"]
            if not isinstance(command, str) or not command.strip():
                raise ConfigError("must be a non-empty string", path=f"{path}.command")
            return cls(unit_id=unit_id, command=command)

        argv = raw["argv"]
        if not isinstance(argv, list) or not argv or not all(isinstance(a, str) for a in argv):
            raise ConfigError("must be a non-empty list of strings", path=f"{path}.argv")
        return cls(unit_id=unit_id, command=tuple(argv))


@dataclass(frozen=True)
class BatchConfig:
    """Validated batch file.

    `timeout_s` is a caller-layered deadline: the CLI fires the shared token
    when it elapses.
    """

    units: list[UnitSpec] = field(default_factory=list)
    timeout_s: float | None = None
    memoize: bool = False

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "BatchConfig":
        units_raw = _require(raw, "units", path="")
        if not isinstance(units_raw, list):
            raise ConfigError("must be a list", path="units")
        units = [UnitSpec.from_mapping(u, path=f"units[{i}]") for i, u in enumerate(units_raw)]

        timeout_s = raw.get("timeout_s")
        if timeout_s is not None:
            if isinstance(timeout_s, bool) or not isinstance(timeout_s, (int, float)) or timeout_s <= 0:
                raise ConfigError("must be a positive number", path="timeout_s")
            timeout_s = float(timeout_s)

        memoize = raw.get("memoize", False)
        if not isinstance(memoize, bool):
            raise ConfigError("must be a boolean", path="memoize")

        return cls(units=units, timeout_s=timeout_s, memoize=memoize)
