"""CLI for running the store contract probe.

Usage:
    python -m kvprobe 6379
    KVPROBE_HOST=10.0.0.5 python -m kvprobe 6380
    KVPROBE_DENSE_KEYS=2000 KVPROBE_SHUFFLE_ITERATIONS=500 python -m kvprobe 6379

Exit codes:
    0  every scenario passed
    1  the store broke a documented contract
    2  usage or setup failure (bad port, unreachable store, rejected script)
"""

from __future__ import annotations

import argparse
import logging
import sys

from pydantic import ValidationError

from kvprobe.config import ProbeSettings
from kvprobe.engine import ScenarioEngine
from kvprobe.exceptions import ContractViolation, InvalidPortError, ProbeError
from kvprobe.storage import RedisStore

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_VIOLATION = 1
EXIT_SETUP = 2


def parse_port(raw: str | None) -> int:
    """Parse a TCP port.

    Raises:
        InvalidPortError: If *raw* is missing, not an integer, or out of range.
    """
    if raw is None:
        raise InvalidPortError(None)
    try:
        port = int(raw)
    except ValueError:
        raise InvalidPortError(raw) from None
    if not 0 < port < 65_536:
        raise InvalidPortError(raw)
    return port


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kvprobe",
        description="Check a Redis instance against its documented command semantics",
    )
    parser.add_argument("port", nargs="?", help="Store port (default: $KVPROBE_PORT)")
    parser.add_argument("--host", help="Store host (default: $KVPROBE_HOST or localhost)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log at DEBUG level")
    return parser


def load_settings(args: argparse.Namespace) -> ProbeSettings:
    """Merge command-line arguments over environment settings."""
    # Init arguments replace KVPROBE_* values before validation.
    overrides: dict[str, object] = {}
    if args.port is not None:
        overrides["port"] = parse_port(args.port)
    if args.host:
        overrides["host"] = args.host
    if args.verbose:
        overrides["log_level"] = "DEBUG"
    settings = ProbeSettings(**overrides)
    if settings.port is None:
        raise InvalidPortError(None)
    return settings


def run(settings: ProbeSettings) -> int:
    """Connect, run every scenario, and return the process exit code."""
    print(settings.url)
    try:
        store = RedisStore.connect(settings)
    except ProbeError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return EXIT_SETUP

    try:
        results = ScenarioEngine(store, settings).run()
    except ContractViolation as exc:
        print(f"CONTRACT VIOLATION: {exc}", file=sys.stderr)
        return EXIT_VIOLATION
    except ProbeError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return EXIT_SETUP
    finally:
        store.close()

    total_ms = sum(r.elapsed_ms for r in results)
    logger.info("%d scenarios passed in %.1f ms", len(results), total_ms)
    return EXIT_OK


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        settings = load_settings(args)
    except (InvalidPortError, ValidationError) as exc:
        parser.error(str(exc))

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    sys.exit(run(settings))


if __name__ == "__main__":
    main()
