#!/usr/bin/env python3
"""
Command pattern implementation for external facilities.

Every interaction with the OS (running a utility, writing or reading a
sysfs attribute) is a Command returning a CommandResult instead of raising,
so callers branch on values rather than on exit codes or exceptions.
"""

import logging
import shutil
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Sequence

from .config import ConfigManager
from .events import event_bus

TIMEOUT = "timeout"
NOT_INSTALLED = "not installed"


@dataclass(frozen=True)
class CommandResult:
    """Outcome of a single command."""
    ok: bool
    output: str = ""
    reason: Optional[str] = None
    returncode: Optional[int] = None

    @property
    def timed_out(self) -> bool:
        return self.reason == TIMEOUT

    @property
    def not_installed(self) -> bool:
        return self.reason == NOT_INSTALLED


class Command(ABC):
    """Base command interface for the Command pattern."""

    @abstractmethod
    def execute(self) -> CommandResult:
        """Execute the command."""
        pass


class ExecCommand(Command):
    """Run an external utility with a bounded timeout."""

    def __init__(self, argv: Sequence[str], timeout: float):
        """
        Initialize the command.

        Args:
            argv: Program and arguments, no shell involved
            timeout: Seconds after which the program is killed
        """
        self.argv = list(argv)
        self.timeout = timeout

    def execute(self) -> CommandResult:
        try:
            proc = subprocess.run(
                self.argv,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            logging.warning("%s timed out after %ss", self.argv[0], self.timeout)
            return CommandResult(False, reason=TIMEOUT)
        except FileNotFoundError:
            return CommandResult(False, reason=NOT_INSTALLED)
        except OSError as exc:
            return CommandResult(False, reason=str(exc))

        if proc.returncode != 0:
            detail = (proc.stderr or proc.stdout).strip().splitlines()
            reason = f"exit status {proc.returncode}"
            if detail:
                reason = f"{reason}: {detail[-1]}"
            return CommandResult(False, proc.stdout, reason, proc.returncode)
        return CommandResult(True, proc.stdout, returncode=0)


class WriteAttributeCommand(Command):
    """Write a value to a sysfs attribute."""

    def __init__(self, path: str, value: str):
        self.path = path
        self.value = value

    def execute(self) -> CommandResult:
        try:
            with open(self.path, "w") as f:
                f.write(self.value)
        except OSError as exc:
            return CommandResult(False, reason=exc.strerror or str(exc))
        logging.debug("%s → %s", self.path, self.value)
        return CommandResult(True)


class ReadAttributeCommand(Command):
    """Read and strip a sysfs attribute."""

    def __init__(self, path: str):
        self.path = path

    def execute(self) -> CommandResult:
        try:
            with open(self.path, encoding="utf-8", errors="replace") as f:
                return CommandResult(True, f.read().strip())
        except OSError as exc:
            return CommandResult(False, reason=exc.strerror or str(exc))


class CommandRunner:
    """
    Entry point drivers and the classifier use to touch the system.

    Tests substitute a subclass that records calls instead of spawning
    processes.
    """

    def __init__(self, config: ConfigManager = None):
        self.config = config or ConfigManager()

    def which(self, tool: str) -> Optional[str]:
        """Return the path of an installed utility, or None."""
        return shutil.which(tool)

    def run(self, argv: Sequence[str], timeout: float = None) -> CommandResult:
        cmd = ExecCommand(argv, timeout or self.config.command_timeout)
        result = cmd.execute()
        event_bus.publish("command_executed", (tuple(argv), result))
        return result

    def write(self, path: str, value: str) -> CommandResult:
        return WriteAttributeCommand(path, value).execute()

    def read(self, path: str) -> Optional[str]:
        """Read an attribute, returning None when it is not readable."""
        result = ReadAttributeCommand(path).execute()
        return result.output if result.ok else None
