#!/usr/bin/env python3
"""
Maps the single action token to the component that handles it.
"""

from enum import Enum
from typing import List, Union

from .errors import UsageError
from .installer import Installer
from .models import StatusSnapshot, TransitionOutcome, TransitionReport
from .orchestrator import TransitionOrchestrator
from .status import StatusAggregator


class Action(Enum):
    SLEEP = "sleep"
    WAKE = "wake"
    INSTALL = "install"
    STATUS = "status"


ACTIONS = {
    "sleep": Action.SLEEP,
    "wake": Action.WAKE,
    "up": Action.WAKE,
    "install": Action.INSTALL,
    "": Action.STATUS,
}

USAGE = "Commands: sleep, up, wake, install, (blank for status)"


def parse_action(token: str) -> Action:
    """Case-insensitive lookup; raises UsageError for anything else."""
    try:
        return ACTIONS[(token or "").strip().lower()]
    except KeyError:
        raise UsageError(f"Unrecognized action {token!r}. {USAGE}") from None


class ProfileDispatcher:
    """Routes an action to the orchestrator, the status aggregator or the installer."""

    def __init__(self, orchestrator: TransitionOrchestrator = None,
                 aggregator: StatusAggregator = None, installer: Installer = None):
        self.orchestrator = orchestrator or TransitionOrchestrator()
        self.aggregator = aggregator or StatusAggregator()
        self.installer = installer or Installer()

    def dispatch(self, token: str) -> Union[TransitionReport, StatusSnapshot, List[TransitionOutcome]]:
        action = parse_action(token)
        if action is Action.SLEEP:
            return self.orchestrator.enter_powersave()
        if action is Action.WAKE:
            return self.orchestrator.restore_performance()
        if action is Action.INSTALL:
            return self.installer.install()
        return self.aggregator.snapshot()
