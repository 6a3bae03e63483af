#!/usr/bin/env python3
"""
Transition orchestration module.

Sequences the subsystem drivers for a sleep (enter powersave) or wake
(restore performance) transition.
"""

import logging
from enum import Enum
from typing import Dict, List, Optional, Tuple

from .classifier import Inventory, ResourceClassifier
from .commands import CommandRunner
from .config import ConfigManager
from .drivers import SubsystemDriver, build_drivers
from .errors import OrchestrationError
from .events import event_bus
from .models import OutcomeStatus, PowerProfile, TransitionOutcome, TransitionReport

# Cheap, universally safe changes first; GPU and network later.
ENTER_SEQUENCE: Tuple[str, ...] = (
    "cpu-governor",
    "powersave-daemon",
    "disk-spindown",
    "gpu-lifecycle",
    "network-link",
    "usb-autosuspend",
    "power-tuning",
    "audio-mute",
    "display-output",
)

# Connectivity and compute first. Display, USB and power tuning have no
# restore step.
RESTORE_SEQUENCE: Tuple[str, ...] = (
    "gpu-lifecycle",
    "network-link",
    "cpu-governor",
    "powersave-daemon",
    "disk-spindown",
    "audio-mute",
)


class TransitionState(Enum):
    IDLE = "idle"
    ENTERING_POWERSAVE = "entering-powersave"
    RESTORING_PERFORMANCE = "restoring-performance"
    COMPLETE = "complete"


class TransitionOrchestrator:
    """
    Drives one transition per call.

    Implements a state machine:
    - IDLE: nothing started yet.
    - ENTERING_POWERSAVE / RESTORING_PERFORMANCE: drivers run in sequence.
    - COMPLETE: every driver ran; outcomes are in the returned report.

    No state survives between calls: every transition discovers the
    resources again and starts from IDLE.
    """

    def __init__(self, classifier: ResourceClassifier = None,
                 drivers: Dict[str, SubsystemDriver] = None,
                 config: ConfigManager = None, runner: CommandRunner = None):
        """Initialize the orchestrator with dependencies."""
        self.config = config or ConfigManager()
        runner = runner or CommandRunner(self.config)
        self.classifier = classifier or ResourceClassifier(runner, self.config)
        self.drivers = drivers or build_drivers(runner, self.config)
        self.state = TransitionState.IDLE

    def enter_powersave(self, inventory: Inventory = None) -> TransitionReport:
        return self.transition(PowerProfile.POWERSAVE, inventory)

    def restore_performance(self, inventory: Inventory = None) -> TransitionReport:
        return self.transition(PowerProfile.PERFORMANCE, inventory)

    def transition(self, profile: PowerProfile, inventory: Optional[Inventory] = None) -> TransitionReport:
        """
        Apply ``profile`` across all subsystems.

        Individual resource failures are recorded in the report. Raises
        OrchestrationError only when the host cannot be enumerated at all.
        """
        self.state = TransitionState.IDLE
        if inventory is None:
            inventory = self.classifier.discover()
        self._check_inventory(inventory)

        if profile is PowerProfile.POWERSAVE:
            self.state = TransitionState.ENTERING_POWERSAVE
            sequence = ENTER_SEQUENCE
            logging.info("%s Enabling low-power settings...", self.config.log_prefix)
        else:
            self.state = TransitionState.RESTORING_PERFORMANCE
            sequence = RESTORE_SEQUENCE
            logging.info("%s Restoring system to normal performance...", self.config.log_prefix)
        event_bus.publish("transition_started", profile)

        outcomes: List[TransitionOutcome] = []
        for name in sequence:
            driver = self.drivers.get(name)
            if driver is None:
                continue
            for outcome in driver.apply(profile, inventory):
                outcomes.append(outcome)
                event_bus.publish("outcome_recorded", outcome)

        report = TransitionReport(profile, tuple(outcomes))
        self.state = TransitionState.COMPLETE
        self._log_summary(report)
        event_bus.publish("transition_finished", report)
        return report

    @staticmethod
    def _check_inventory(inventory: Inventory) -> None:
        if not inventory.cpus:
            raise OrchestrationError("no logical CPU could be enumerated")
        if not inventory.disk_namespace_readable:
            raise OrchestrationError("block devices could not be enumerated")

    def _log_summary(self, report: TransitionReport) -> None:
        counts = {status: 0 for status in OutcomeStatus}
        for outcome in report.outcomes:
            counts[outcome.status] += 1

        if report.profile is PowerProfile.POWERSAVE:
            message = "Low-power mode applied."
        else:
            message = "System performance settings restored."
        logging.info(
            "%s %s (applied=%d skipped=%d failed=%d)",
            self.config.log_prefix, message,
            counts[OutcomeStatus.APPLIED], counts[OutcomeStatus.SKIPPED], counts[OutcomeStatus.FAILED],
        )
