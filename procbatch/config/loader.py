from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Mapping, MutableMapping, Sequence

import yaml
from dotenv import load_dotenv

from procbatch.config.errors import ConfigError


_ENV_PLACEHOLDER_RE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


def _deep_merge(base: MutableMapping[str, Any], overlay: Mapping[str, Any]) -> MutableMapping[str, Any]:
    """Merge `overlay` into `base`; nested mappings merge, everything else (lists too) is replaced."""

    for k, v in overlay.items():
        if isinstance(v, Mapping) and isinstance(base.get(k), Mapping):
            base[k] = _deep_merge(dict(base[k]), v)  # type: ignore[arg-type]
        else:
            base[k] = v
    return base


def _read_fragment(path: Path) -> Mapping[str, Any]:
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")
    try:
        text = path.read_text(encoding="utf-8")
        fragment = yaml.safe_load(text) if text.strip() else {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Failed to read YAML config: {path}: {e}") from e

    if fragment is None:
        return {}
    if not isinstance(fragment, Mapping):
        raise ConfigError(f"Top-level YAML must be a mapping/dict: {path}")
    return fragment


def _expand_env(obj: Any, *, key_path: str, unresolved: list[str]) -> Any:
    if isinstance(obj, str):
        def repl(match: re.Match[str]) -> str:
            name = match.group(1)
            value = os.getenv(name)
            if value is None or value == "":
                reason = "missing" if value is None else "empty"
                unresolved.append(f"- {name} ({reason}) at {key_path or '<root>'}")
                return match.group(0)
            return value

        return _ENV_PLACEHOLDER_RE.sub(repl, obj)

    if isinstance(obj, Mapping):
        return {
            str(k): _expand_env(v, key_path=f"{key_path}.{k}" if key_path else str(k), unresolved=unresolved)
            for k, v in obj.items()
        }

    if isinstance(obj, list):
        return [
            _expand_env(v, key_path=f"{key_path}[{i}]", unresolved=unresolved)
            for i, v in enumerate(obj)
        ]

    return obj


def load_config(
    paths: Path | Sequence[Path],
    *,
    load_dotenv_file: bool = True,
    dotenv_path: Path | None = None,
    expand_env: bool = True,
) -> dict[str, Any]:
    """Load one or more YAML batch files with strict ${ENV_VAR} expansion.

    Later files override earlier ones. Unit commands commonly reference env
    vars (tool paths, hosts), so every unresolved reference is reported at
    once instead of failing on the first. With `expand_env=False` the merged
    config is returned with its `${...}` placeholders intact.

    Raises:
        ConfigError: If a file is missing or invalid, or env expansion is unresolved.
    """

    file_list: list[Path] = [paths] if isinstance(paths, Path) else [Path(p) for p in paths]
    if not file_list:
        raise ConfigError("No config files provided")

    if load_dotenv_file:
        load_dotenv(dotenv_path or Path.cwd() / ".env", override=False)

    merged: dict[str, Any] = {}
    for p in file_list:
        merged = dict(_deep_merge(merged, _read_fragment(p)))

    if not expand_env:
        return merged

    unresolved: list[str] = []
    expanded = _expand_env(merged, key_path="", unresolved=unresolved)
    if unresolved:
        sources = ",".join(str(p) for p in file_list)
        raise ConfigError("\n".join([f"Unresolved environment variables in config ({sources}):", *unresolved]))

    return expanded
