#!/usr/bin/env python3
"""
Provisioning of the external utilities the drivers rely on.

The actual installation is delegated to the system package manager.
"""

import logging
from typing import List

from .commands import CommandRunner
from .config import ConfigManager
from .models import SkipReason, TransitionOutcome

PACKAGE_MANAGER = ("apt-get", "install", "-y")


class Installer:
    """Installs the packages providing any missing utility."""

    name = "install"

    def __init__(self, runner: CommandRunner = None, config: ConfigManager = None):
        self.config = config or ConfigManager()
        self.runner = runner or CommandRunner(self.config)

    def missing_tools(self) -> List[str]:
        return [tool for tool in self.config.packages if not self.runner.which(tool)]

    def install(self) -> List[TransitionOutcome]:
        """One outcome per utility: already installed, installed, or failed."""
        missing = self.missing_tools()
        outcomes = {
            tool: TransitionOutcome.skipped(tool, "install", SkipReason.ALREADY_INSTALLED, self.name)
            for tool in self.config.packages if tool not in missing
        }

        if missing:
            packages = []
            for tool in missing:
                package = self.config.packages[tool]
                if package not in packages:
                    packages.append(package)
            logging.info("%s Installing %s", self.config.log_prefix, " ".join(packages))

            result = self.runner.run(list(PACKAGE_MANAGER) + packages, timeout=self.config.install_timeout)
            for tool in missing:
                operation = f"install {self.config.packages[tool]}"
                if result.ok:
                    outcomes[tool] = TransitionOutcome.applied(tool, operation, self.name)
                else:
                    reason = "package manager not available" if result.not_installed else result.reason
                    outcomes[tool] = TransitionOutcome.failed(tool, operation, reason, self.name)
        else:
            logging.info("%s All utilities already installed", self.config.log_prefix)

        return [outcomes[tool] for tool in self.config.packages]
