#!/usr/bin/env python3
"""
Status aggregation module.

Builds a StatusSnapshot from each driver's query path. Read-only.
"""

import logging
from typing import Dict

from .classifier import Inventory, ResourceClassifier
from .commands import CommandRunner
from .config import ConfigManager
from .drivers import SubsystemDriver, build_drivers
from .models import StatusSnapshot


class StatusAggregator:
    """
    Assembles a composite status snapshot.

    Every field is observed independently, so the snapshot may show
    subsystems that disagree (e.g. a powersave governor while the powersave
    daemon is inactive). No field is reconciled against another.
    """

    def __init__(self, classifier: ResourceClassifier = None,
                 drivers: Dict[str, SubsystemDriver] = None,
                 config: ConfigManager = None, runner: CommandRunner = None):
        self.config = config or ConfigManager()
        runner = runner or CommandRunner(self.config)
        self.classifier = classifier or ResourceClassifier(runner, self.config)
        self.drivers = drivers or build_drivers(runner, self.config)

    def _query(self, name: str, inventory: Inventory):
        return self.drivers[name].query(inventory)

    def snapshot(self, inventory: Inventory = None) -> StatusSnapshot:
        """Query every subsystem; missing observations read "Unknown"."""
        if inventory is None:
            inventory = self.classifier.discover()

        governor, mhz = self._query("cpu-governor", inventory)
        snapshot = StatusSnapshot(
            cpu_governor=governor,
            cpu_mhz=mhz,
            powersave_daemon_active=self._query("powersave-daemon", inventory),
            disks=self._query("disk-spindown", inventory),
            gpu=self._query("gpu-lifecycle", inventory),
            interfaces=self._query("network-link", inventory),
            usb_autosuspend=self._query("usb-autosuspend", inventory),
            power_tuning=self._query("power-tuning", inventory),
            audio=self._query("audio-mute", inventory),
            displays=self._query("display-output", inventory),
        )
        logging.debug("Status snapshot: %s", snapshot)
        return snapshot
