"""Batch configuration.

- YAML files under the caller's control, merged in order
- Strict ${ENV_VAR} expansion (missing/empty env vars are errors)
"""

from __future__ import annotations

from procbatch.config.errors import ConfigError
from procbatch.config.loader import load_config
from procbatch.config.model import BatchConfig, UnitSpec

__all__ = ["BatchConfig", "ConfigError", "UnitSpec", "load_config"]
