"""
Agentify entry point.

This file handles startup concerns (arg-parsing, logging) and launches the requested mode: the
compiler API, a one-off local compile, a client submission to a running API, or a toolchain
report.
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from agentify.common import (
    AnsiColors,
    colored_print,
)
from agentify.config import settings

logger = logging.getLogger(__name__)

EXIT_CODES = {"succeeded": 0, "failed": 1, "degraded": 2}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _init_logging(level: str) -> None:
    numeric = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=numeric,
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        stream=sys.stdout,
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _compile_local(config_path: Path) -> int:
    # Lazy import to avoid loading the compiler and templates if not needed
    from agentify.compiler.orchestrator import (  # pylint: disable=import-outside-toplevel
        CompilationOrchestrator,
    )

    raw_input = json.loads(config_path.read_text(encoding="utf-8"))
    orchestrator = CompilationOrchestrator.from_settings(settings)
    orchestrator.subscribe(
        lambda event: colored_print(
            f"[{event.progress:>3}%] {event.step}: {event.message}", AnsiColors.BLUE
        )
    )
    record = orchestrator.compile(raw_input)
    print(json.dumps(record.to_dict(include_events=False), indent=2))
    return EXIT_CODES.get(record.status.value, 1)


def _doctor() -> int:
    from agentify.compiler.toolchain import (  # pylint: disable=import-outside-toplevel
        ToolchainInspector,
    )

    statuses = ToolchainInspector(probe_timeout=settings.TOOL_PROBE_TIMEOUT).detect()
    for status in statuses:
        if status.available:
            version = status.version or "unknown version"
            colored_print(f"✔ {status.name} {version} ({status.path})", AnsiColors.GREEN)
        else:
            colored_print(f"✘ {status.name} not found", AnsiColors.RED)
    return 0 if all(s.available for s in statuses) else 1


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------
def main(argv: list[str] | None = None) -> int:
    """
    Main entry point for the Agentify compiler.

    This function sets up the command-line interface, initializes logging, and runs the selected
    mode.  Returns the process exit code.
    """
    if argv is None:
        argv = sys.argv[1:]

    parser = argparse.ArgumentParser(description="Compile agent configurations into plugins")
    parser.add_argument(
        "--mode",
        choices=["api", "compile", "submit", "doctor"],
        type=str.lower,
        default="api",
        help="Run the REST API, compile or submit a config file, or check the toolchain "
        "(default: api)",
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="Agent configuration JSON file (compile and submit modes)",
    )
    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error", "critical"],
        type=str.lower,
        default=settings.LOG_LEVEL,
        help="Logging level (default from env: %(default)s)",
    )
    args = parser.parse_args(argv)

    # Override log level setting with command-line argument
    settings.LOG_LEVEL = args.log_level

    _init_logging(settings.LOG_LEVEL)

    logger.info("Starting Agentify [%s mode]", args.mode)
    logger.debug("Settings: %s", settings.model_dump())

    if args.mode in ("compile", "submit") and args.config is None:
        parser.error(f"--config is required in {args.mode} mode")

    if args.mode == "api":
        from agentify.api.app import run_api  # pylint: disable=import-outside-toplevel

        run_api(host="0.0.0.0", port=settings.API_PORT, reload=settings.DEBUG)
        return 0
    if args.mode == "compile":
        return _compile_local(args.config)
    if args.mode == "submit":
        from agentify.client.cli import run_cli  # pylint: disable=import-outside-toplevel

        return run_cli(args.config)
    return _doctor()


if __name__ == "__main__":
    sys.exit(main())
