"""Runtime entrypoints (CLI, signal wiring).

Kept separate from the core (`procbatch.unit`, `procbatch.coordinator`) so the
library can be embedded without pulling in config or logging setup.
"""
