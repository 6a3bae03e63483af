#!/usr/bin/env python3
"""Power State Control

Toggles a Linux host between a "performance" and a "powersave" profile and
reports the current state of each subsystem.

Usage: power-state [sleep|wake|up|install]   (no action prints status)

- CPU scaling governor and powersave daemon.
- Disk spindown timers for rotational disks only.
- GPU kernel modules, unloaded only while idle.
- Network links, never the one carrying the current session.
- USB autosuspend, powertop tuning, audio mute and display outputs.
"""

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from .commands import CommandRunner
from .config import ConfigManager
from .dispatcher import ProfileDispatcher, USAGE
from .errors import OrchestrationError, PreconditionError, UsageError
from .events import event_bus
from .installer import Installer
from .models import StatusSnapshot, TransitionOutcome, TransitionReport
from .orchestrator import TransitionOrchestrator
from .report import render_outcomes, render_status, render_transition
from .status import StatusAggregator


def setup_logging(log_file_path: str, log_level_str: str = "INFO"):
    """Configure logging system for both file and console output."""
    log_level = getattr(logging, log_level_str.upper(), logging.INFO)

    handlers = [logging.StreamHandler(sys.stdout)]
    try:
        handlers.insert(0, logging.FileHandler(log_file_path))
    except OSError as exc:
        print(f"[WARN] Cannot open log file {log_file_path}: {exc}", file=sys.stderr)

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s [%(levelname)s] %(module)s: %(message)s',
        datefmt='%H:%M:%S',
        handlers=handlers,
    )
    logging.debug(f"Logging initialized at level {log_level_str.upper()}")


def parse_args(argv: Optional[List[str]] = None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Control and report low-power mode.",
        epilog=USAGE,
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    # Validated by the dispatcher so an unknown action, or extra words, exit with status 1
    parser.add_argument(
        "action",
        nargs="*",
        default=[],
        help="sleep, wake/up, install, or empty for status"
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to YAML configuration file. If not provided, searches in standard locations."
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set the logging level."
    )
    return parser.parse_args(argv)


def find_config_file(specified_path: str = None) -> Optional[str]:
    """
    Find the configuration file.
    Searches in order: specified path, package directory, project root, /etc, user's config.
    Returns None when there is none; every setting has a default.
    """
    if specified_path and os.path.exists(specified_path):
        return specified_path

    package_dir = Path(__file__).resolve().parent
    search_paths = [
        package_dir / "config.yaml",
        package_dir.parent / "config.yaml",
        Path("/etc/power-state/config.yaml"),
        Path.home() / ".config/power-state/config.yaml"
    ]

    for path in search_paths:
        if path.exists():
            return str(path)

    return None


def require_root() -> None:
    if os.geteuid() != 0:
        raise PreconditionError("This script must be run as root. Please use 'sudo'.")


def log_outcome(outcome: TransitionOutcome) -> None:
    """Event handler: trace each outcome as the orchestrator records it.

    Kept at DEBUG; the rendered report already lists every outcome.
    """
    logging.debug("   %s %s: %s", outcome.resource, outcome.operation, outcome)


def log_command(payload) -> None:
    argv, result = payload
    logging.debug("ran %s -> %s", " ".join(argv), "ok" if result.ok else result.reason)


def render(result) -> str:
    if isinstance(result, TransitionReport):
        return render_transition(result)
    if isinstance(result, StatusSnapshot):
        return render_status(result)
    return render_outcomes(result)


def main(argv: Optional[List[str]] = None) -> int:
    """Main application entry point.

    Requires root privileges; the check runs before anything else.
    Returns the process exit status.
    """
    args = parse_args(argv)

    try:
        require_root()
    except PreconditionError as exc:
        print(f"\n[ERR] {exc}\n", file=sys.stderr)
        return 1

    config_file_path = find_config_file(args.config)
    try:
        config = ConfigManager(config_file_path)
    except (FileNotFoundError, ValueError) as exc:
        print(f"[ERR] {exc}", file=sys.stderr)
        return 1

    setup_logging(config.log_file, args.log_level)
    if config_file_path:
        logging.debug(f"Using configuration from: {config_file_path}")

    event_bus.subscribe("outcome_recorded", log_outcome)
    event_bus.subscribe("command_executed", log_command)

    runner = CommandRunner(config)
    dispatcher = ProfileDispatcher(
        orchestrator=TransitionOrchestrator(config=config, runner=runner),
        aggregator=StatusAggregator(config=config, runner=runner),
        installer=Installer(runner, config),
    )

    try:
        result = dispatcher.dispatch(" ".join(args.action))
    except UsageError as exc:
        print(f"Usage: power-state [sleep|wake|up|install]\n{exc}", file=sys.stderr)
        return 1
    except OrchestrationError as exc:
        logging.critical("%s Transition aborted: %s", config.log_prefix, exc)
        return 1
    finally:
        event_bus.unsubscribe("outcome_recorded", log_outcome)
        event_bus.unsubscribe("command_executed", log_command)

    print(render(result))
    return 0


if __name__ == "__main__":
    sys.exit(main())
