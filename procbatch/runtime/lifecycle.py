"""Process lifecycle and main entrypoint.

`procbatch run` loads a batch file, runs every unit concurrently under one
cancellation token, and reports one JSON line per unit on stdout. SIGINT and
SIGTERM fire the token, so children are killed and reaped before exit.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Sequence

from procbatch.cancel import CancellationToken
from procbatch.config.errors import ConfigError
from procbatch.config.loader import load_config
from procbatch.config.model import BatchConfig
from procbatch.coordinator import BatchCoordinator
from procbatch.errors import ProcBatchError
from procbatch.observability.logging import configure_logging
from procbatch.unit import RunnableUnit


logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2
EXIT_CANCELLED = 130

_SUBCOMMANDS = {"run", "print-config"}
_SECRET_KEY_PARTS = ("api_key", "token", "secret", "password")


def _redact_secrets(obj):  # noqa: ANN001
    """Best-effort redaction for human-facing config dumps.

    Values under secret-looking keys are masked. Env-expanded values never
    reach this function: callers pass the config with `${...}` placeholders.
    """

    if isinstance(obj, dict):
        out = {}
        for k, v in obj.items():
            if isinstance(k, str) and any(p in k.lower() for p in _SECRET_KEY_PARTS):
                out[k] = "<redacted>"
            else:
                out[k] = _redact_secrets(v)
        return out
    if isinstance(obj, list):
        return [_redact_secrets(x) for x in obj]
    return obj


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="procbatch",
        description="Run a batch of external commands concurrently with shared cancellation",
    )

    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Logging level (e.g. DEBUG, INFO, WARNING); DEBUG=1 in the env forces DEBUG",
    )
    parser.add_argument(
        "--config",
        type=Path,
        action="append",
        help="Batch YAML file; repeat to overlay files in order (default: ./procbatch.yaml)",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Cancel the whole batch after this many seconds (overrides timeout_s)",
    )

    sub = parser.add_subparsers(dest="command")

    run_p = sub.add_parser("run", help="Run every unit in the batch")
    run_p.set_defaults(command="run")

    print_p = sub.add_parser("print-config", help="Load, validate and print the batch config")
    print_p.set_defaults(command="print-config")

    return parser


def build_coordinator(cfg: BatchConfig) -> BatchCoordinator:
    coordinator = BatchCoordinator()
    for spec in cfg.units:
        unit = RunnableUnit(spec.unit_id, spec.command)
        coordinator.add_unit(unit.memoize() if cfg.memoize else unit)
    return coordinator


def _install_signal_handlers(token: CancellationToken) -> list[signal.Signals]:
    loop = asyncio.get_running_loop()
    installed: list[signal.Signals] = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, token.fire, sig.name)
        except (NotImplementedError, RuntimeError):
            # Not available on this platform/thread; Ctrl-C still cancels via KeyboardInterrupt.
            continue
        installed.append(sig)
    return installed


async def run_batch(cfg: BatchConfig, *, timeout_s: float | None = None) -> int:
    coordinator = build_coordinator(cfg)
    token = CancellationToken()

    installed = _install_signal_handlers(token)
    deadline = timeout_s if timeout_s is not None else cfg.timeout_s
    timer = token.fire_after(deadline) if deadline is not None else None
    try:
        outcomes = await coordinator.run_all_settled(token)
    finally:
        if timer is not None:
            timer.cancel()
        loop = asyncio.get_running_loop()
        for sig in installed:
            loop.remove_signal_handler(sig)

    for outcome in outcomes:
        sys.stdout.write(json.dumps(outcome.to_dict(), ensure_ascii=False))
        sys.stdout.write("\n")

    failed = [o for o in outcomes if not o.ok]
    if not failed:
        return EXIT_OK

    logger.error(
        "batch_failed",
        extra={"failed": len(failed), "units": len(outcomes), "error": str(failed[0].error)},
    )
    if token.fired:
        return EXIT_CANCELLED
    return EXIT_FAILED


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entrypoint referenced by pyproject.toml."""

    argv_list = list(argv) if argv is not None else sys.argv[1:]

    # Default to `run` when no subcommand is given.
    if not any(a in _SUBCOMMANDS for a in argv_list) and not any(a in {"-h", "--help"} for a in argv_list):
        argv_list = [*argv_list, "run"]

    parser = _build_parser()
    try:
        ns = parser.parse_args(argv_list)
    except SystemExit as e:
        code = e.code
        return int(code) if isinstance(code, int) else 1

    configure_logging(level=ns.log_level)

    config_paths: list[Path] = ns.config or [Path.cwd() / "procbatch.yaml"]
    try:
        raw = load_config(config_paths)
        cfg = BatchConfig.from_mapping(raw)
        logger.info(
            "config_loaded",
            extra={"config_files": [str(p) for p in config_paths], "units": len(cfg.units)},
        )

        if ns.command == "print-config":
            # Print placeholders, not the values expanded from the environment.
            unexpanded = load_config(config_paths, load_dotenv_file=False, expand_env=False)
            sys.stdout.write(json.dumps(_redact_secrets(unexpanded), ensure_ascii=False, indent=2))
            sys.stdout.write("\n")
            return EXIT_OK

        if ns.timeout is not None and ns.timeout <= 0:
            raise ConfigError("must be a positive number", path="--timeout")

        return asyncio.run(run_batch(cfg, timeout_s=ns.timeout))

    except ConfigError as e:
        logger.error("config_error", extra={"error": str(e)})
        sys.stderr.write(f"ConfigError: {e}\n")
        return EXIT_CONFIG
    except ProcBatchError as e:
        logger.error("batch_error", extra={"error_type": e.error_type, "error": e.message})
        sys.stderr.write(f"{type(e).__name__}: {e}\n")
        return EXIT_FAILED
    except KeyboardInterrupt:
        return EXIT_CANCELLED
    except Exception as e:  # noqa: BLE001
        logger.exception("fatal_error")
        sys.stderr.write(f"Fatal error: {e}\n")
        return EXIT_FAILED
