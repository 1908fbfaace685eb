from __future__ import annotations

from .logging import configure_logging, debug_enabled

__all__ = ["configure_logging", "debug_enabled"]
