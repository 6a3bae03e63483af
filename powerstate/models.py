#!/usr/bin/env python3
"""
Data model shared by the classifier, drivers, orchestrator and status layers.

Everything here is immutable and rebuilt on every invocation.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Optional, Tuple, Union

UNKNOWN = "Unknown"

# Capability flags attached at classification time
SPINDOWN = "spindown"
PRESENT = "present"
AUTOSUSPEND = "autosuspend"


class PowerProfile(Enum):
    PERFORMANCE = "performance"
    POWERSAVE = "powersave"


class ResourceKind(Enum):
    ROTATIONAL_DISK = "rotational-disk"
    SOLID_STATE_DISK = "solid-state-disk"
    NVME_DISK = "nvme-disk"
    NETWORK_INTERFACE = "network-interface"
    GPU_ADAPTER = "gpu-adapter"
    USB_POWER_NODE = "usb-power-node"
    AUDIO_SINK = "audio-sink"
    DISPLAY_OUTPUT = "display-output"
    LOGICAL_CPU = "logical-cpu"
    POWER_DAEMON = "power-daemon"
    POWER_TUNER = "power-tuner"
    UNKNOWN = "unknown"


class SkipReason(str, Enum):
    """Why an operation did not apply to a resource."""
    NOT_ROTATIONAL = "not rotational"
    IN_USE = "in use"
    NOT_PRESENT = "not present"
    PROTECTED = "protected"
    CLASSIFICATION_UNAVAILABLE = "classification unavailable"
    NO_GRAPHICAL_SESSION = "no graphical session"
    NOT_RESTORED = "not restored"
    ALREADY_IN_STATE = "already in state"
    ALREADY_INSTALLED = "already installed"

    def __str__(self) -> str:
        return self.value


class OutcomeStatus(Enum):
    APPLIED = "Applied"
    SKIPPED = "Skipped"
    FAILED = "Failed"


def skipped(reason: Union[SkipReason, str]) -> str:
    """Render a skip as a status field value, e.g. ``Skipped(not present)``."""
    return f"Skipped({reason})"


@dataclass(frozen=True)
class ManagedResource:
    """A disk, interface, GPU, ... as classified for this invocation."""
    identifier: str
    kind: ResourceKind
    capabilities: FrozenSet[str] = frozenset()
    protected: bool = False
    busy: Optional[bool] = False

    def supports(self, capability: str) -> bool:
        return capability in self.capabilities

    @property
    def classified(self) -> bool:
        return self.kind is not ResourceKind.UNKNOWN


@dataclass(frozen=True)
class TransitionOutcome:
    """Result of one attempted operation on one resource."""
    resource: str
    operation: str
    status: OutcomeStatus
    reason: Optional[str] = None
    subsystem: str = ""

    @classmethod
    def applied(cls, resource: str, operation: str, subsystem: str = "") -> "TransitionOutcome":
        return cls(resource, operation, OutcomeStatus.APPLIED, subsystem=subsystem)

    @classmethod
    def skipped(cls, resource: str, operation: str, reason, subsystem: str = "") -> "TransitionOutcome":
        return cls(resource, operation, OutcomeStatus.SKIPPED, str(reason), subsystem)

    @classmethod
    def failed(cls, resource: str, operation: str, reason: str, subsystem: str = "") -> "TransitionOutcome":
        return cls(resource, operation, OutcomeStatus.FAILED, reason, subsystem)

    def __str__(self) -> str:
        if self.reason:
            return f"{self.status.value}({self.reason})"
        return self.status.value


@dataclass(frozen=True)
class TransitionReport:
    """Ordered outcomes of one sleep or wake transition."""
    profile: PowerProfile
    outcomes: Tuple[TransitionOutcome, ...] = ()

    def _with_status(self, status: OutcomeStatus) -> Tuple[TransitionOutcome, ...]:
        return tuple(o for o in self.outcomes if o.status is status)

    @property
    def applied(self) -> Tuple[TransitionOutcome, ...]:
        return self._with_status(OutcomeStatus.APPLIED)

    @property
    def skipped(self) -> Tuple[TransitionOutcome, ...]:
        return self._with_status(OutcomeStatus.SKIPPED)

    @property
    def failed(self) -> Tuple[TransitionOutcome, ...]:
        return self._with_status(OutcomeStatus.FAILED)

    def for_subsystem(self, subsystem: str) -> Tuple[TransitionOutcome, ...]:
        return tuple(o for o in self.outcomes if o.subsystem == subsystem)


@dataclass(frozen=True)
class StatusSnapshot:
    """
    Composite, read-only view of the host's power state.

    Per-resource fields are tuples of (identifier, value) pairs so the
    snapshot stays hashable and comparable; use the ``*_map`` helpers for
    dict access. Fields are independent observations and may disagree.
    """
    cpu_governor: str = UNKNOWN
    cpu_mhz: Optional[int] = None
    powersave_daemon_active: Optional[bool] = None
    disks: Tuple[Tuple[str, str], ...] = ()
    gpu: str = UNKNOWN
    interfaces: Tuple[Tuple[str, str], ...] = ()
    usb_autosuspend: str = UNKNOWN
    power_tuning: str = UNKNOWN
    audio: str = UNKNOWN
    displays: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def power_mode(self) -> Optional[PowerProfile]:
        """Headline indicator: powersave while the powersave daemon runs.

        Without an active daemon there is no single answer; callers should
        read the individual fields instead.
        """
        if self.powersave_daemon_active:
            return PowerProfile.POWERSAVE
        return None

    @property
    def disk_map(self) -> Dict[str, str]:
        return dict(self.disks)

    @property
    def interface_map(self) -> Dict[str, str]:
        return dict(self.interfaces)
