#!/usr/bin/env python3
"""
Subsystem drivers.

Each driver wraps one external control surface and exposes
``apply(profile, inventory)`` returning one TransitionOutcome per resource,
and ``query(inventory)`` returning the subsystem's current observation.
Neither ever raises: failures become ``Failed`` outcomes or ``Unknown``
observations.
"""

import logging
import os
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .classifier import Inventory
from .commands import CommandResult, CommandRunner
from .config import ConfigManager
from .errors import ClassificationUnavailable, DriverFailed, DriverSkipped, QueryUnavailable
from .models import (
    AUTOSUSPEND, PRESENT, SPINDOWN, UNKNOWN,
    ManagedResource, PowerProfile, ResourceKind, SkipReason, TransitionOutcome,
    skipped,
)

_APM_LEVEL = re.compile(r"Advanced power.*level.*")
_MIXER_STATE = re.compile(r"\[(on|off)\]")
IFF_UP = 0x1


class SubsystemDriver(ABC):
    """
    Base class for all drivers.

    Subclasses implement ``apply_to`` for a single resource, raising
    DriverSkipped or DriverFailed, and ``read`` for the query path, raising
    QueryUnavailable. The base class turns those into outcomes and
    ``Unknown`` values.
    """

    name = "subsystem"
    inventory_field = ""
    # False for one-directional tweaks that have no restore step
    restorable = True
    unknown: Any = UNKNOWN

    def __init__(self, runner: CommandRunner = None, config: ConfigManager = None):
        self.config = config or ConfigManager()
        self.runner = runner or CommandRunner(self.config)

    def resources(self, inventory: Inventory) -> Sequence[ManagedResource]:
        return getattr(inventory, self.inventory_field)

    def operation(self, profile: PowerProfile) -> str:
        return f"{self.name} {profile.value}"

    def apply(self, profile: PowerProfile, inventory: Inventory) -> List[TransitionOutcome]:
        """Apply ``profile`` to every resource this driver manages."""
        if profile is PowerProfile.PERFORMANCE and not self.restorable:
            return [TransitionOutcome.skipped(self.name, self.operation(profile),
                                              SkipReason.NOT_RESTORED, self.name)]
        return [self._apply_one(resource, profile) for resource in self.resources(inventory)]

    def _apply_one(self, resource: ManagedResource, profile: PowerProfile) -> TransitionOutcome:
        operation = self.operation(profile)
        try:
            if not resource.classified:
                raise ClassificationUnavailable(resource.identifier)
            self.apply_to(resource, profile)
        except ClassificationUnavailable:
            return TransitionOutcome.skipped(resource.identifier, operation,
                                             SkipReason.CLASSIFICATION_UNAVAILABLE, self.name)
        except DriverSkipped as exc:
            return TransitionOutcome.skipped(resource.identifier, operation, exc.reason, self.name)
        except DriverFailed as exc:
            return TransitionOutcome.failed(resource.identifier, operation, exc.reason, self.name)
        except Exception as exc:
            logging.exception("%s: unexpected error on %s", self.name, resource.identifier)
            return TransitionOutcome.failed(resource.identifier, operation,
                                            str(exc) or type(exc).__name__, self.name)
        return TransitionOutcome.applied(resource.identifier, operation, self.name)

    @abstractmethod
    def apply_to(self, resource: ManagedResource, profile: PowerProfile) -> None:
        """Apply ``profile`` to a single, already classified resource."""

    def query(self, inventory: Inventory) -> Any:
        """Current observation for this subsystem; ``unknown`` on failure."""
        try:
            return self.read(inventory)
        except QueryUnavailable as exc:
            logging.debug("%s: query unavailable: %s", self.name, exc)
        except Exception:
            logging.exception("%s: query failed", self.name)
        return self.unknown

    @abstractmethod
    def read(self, inventory: Inventory) -> Any:
        """Read the current state, raising QueryUnavailable when impossible."""

    def _check(self, result: CommandResult) -> None:
        """Translate a command result into the driver error taxonomy."""
        if result.ok:
            return
        if result.not_installed:
            raise DriverSkipped(SkipReason.NOT_PRESENT)
        raise DriverFailed(result.reason or "failed")

    @staticmethod
    def _require(resource: ManagedResource, capability: str, reason: SkipReason) -> None:
        if not resource.supports(capability):
            raise DriverSkipped(reason)


class CpuGovernorDriver(SubsystemDriver):
    """Scaling governor of every logical CPU."""

    name = "cpu-governor"
    inventory_field = "cpus"
    unknown = (UNKNOWN, None)

    def governor(self, profile: PowerProfile) -> str:
        return self.config.governors[profile.value]

    def operation(self, profile: PowerProfile) -> str:
        return f"governor {self.governor(profile)}"

    def _attribute(self, cpu: str, attribute: str) -> str:
        return os.path.join(self.config.cpu_root, cpu, "cpufreq", attribute)

    def apply_to(self, resource: ManagedResource, profile: PowerProfile) -> None:
        governor = self.governor(profile)
        if self.runner.which("cpufreq-set"):
            cpu_id = resource.identifier[len("cpu"):]
            result = self.runner.run(["cpufreq-set", "-c", cpu_id, "-g", governor])
        else:
            result = self.runner.write(self._attribute(resource.identifier, "scaling_governor"), governor)
        self._check(result)

    def read(self, inventory: Inventory) -> Tuple[str, Optional[int]]:
        """CPU 0's governor and the mean current frequency in whole MHz."""
        if not inventory.cpus:
            raise QueryUnavailable("no cpus")

        first = inventory.cpus[0].identifier
        governor = self.runner.read(self._attribute(first, "scaling_governor")) or UNKNOWN

        freqs = []
        for cpu in inventory.cpus:
            value = self.runner.read(self._attribute(cpu.identifier, "scaling_cur_freq"))
            try:
                freqs.append(int(value))
            except (TypeError, ValueError):
                continue
        mhz = round(sum(freqs) / len(freqs) / 1000) if freqs else None
        return governor, mhz


class PowersaveDaemonDriver(SubsystemDriver):
    """``pm-powersave true|false``; best-effort."""

    name = "powersave-daemon"
    inventory_field = "power_daemons"
    unknown = None

    def apply_to(self, resource: ManagedResource, profile: PowerProfile) -> None:
        self._require(resource, PRESENT, SkipReason.NOT_PRESENT)
        flag = "true" if profile is PowerProfile.POWERSAVE else "false"
        self._check(self.runner.run([resource.identifier, flag]))

    def read(self, inventory: Inventory) -> bool:
        if not self.runner.which("pgrep"):
            raise QueryUnavailable("pgrep not installed")
        result = self.runner.run(["pgrep", "-f", self.config.powersave_daemon])
        if result.ok:
            return True
        # pgrep exits 1 when nothing matched
        if result.returncode == 1:
            return False
        raise QueryUnavailable(result.reason)


class DiskSpindownDriver(SubsystemDriver):
    """hdparm standby timeout for rotational disks."""

    name = "disk-spindown"
    inventory_field = "disks"
    unknown = ()

    def timeout(self, profile: PowerProfile) -> int:
        return self.config.spindown_timeout if profile is PowerProfile.POWERSAVE else 0

    def operation(self, profile: PowerProfile) -> str:
        return f"spindown {self.timeout(profile)}"

    def apply_to(self, resource: ManagedResource, profile: PowerProfile) -> None:
        self._require(resource, SPINDOWN, SkipReason.NOT_ROTATIONAL)
        result = self.runner.run(["hdparm", "-S", str(self.timeout(profile)), resource.identifier])
        self._check(result)

    def read(self, inventory: Inventory) -> Tuple[Tuple[str, str], ...]:
        return tuple((disk.identifier, self._disk_state(disk)) for disk in inventory.disks)

    def _disk_state(self, disk: ManagedResource) -> str:
        # hdparm only speaks ATA; SATA SSDs and unclassified disks still report APM
        if disk.kind is ResourceKind.NVME_DISK:
            return skipped(SkipReason.NOT_ROTATIONAL)

        result = self.runner.run(["hdparm", "-I", disk.identifier])
        if not result.ok:
            return UNKNOWN
        match = _APM_LEVEL.search(result.output)
        return match.group(0).strip() if match else UNKNOWN


class GpuLifecycleDriver(SubsystemDriver):
    """Loads and unloads the GPU kernel modules."""

    name = "gpu-lifecycle"
    inventory_field = "gpus"

    def operation(self, profile: PowerProfile) -> str:
        return "unload modules" if profile is PowerProfile.POWERSAVE else "load modules"

    def is_loaded(self, module: str) -> bool:
        return os.path.isdir(os.path.join(self.config.module_root, module))

    def apply_to(self, resource: ManagedResource, profile: PowerProfile) -> None:
        self._require(resource, PRESENT, SkipReason.NOT_PRESENT)

        if profile is PowerProfile.POWERSAVE:
            if resource.busy is None:
                raise DriverSkipped(SkipReason.CLASSIFICATION_UNAVAILABLE)
            if resource.busy:
                raise DriverSkipped(SkipReason.IN_USE)
            # Submodules hold references to the core module, unload them first
            modules = [m for m in reversed(self.config.gpu_modules) if self.is_loaded(m)]
            if not modules:
                raise DriverSkipped(SkipReason.ALREADY_IN_STATE)
            action = ["modprobe", "-r"]
        else:
            modules = list(self.config.gpu_modules)
            action = ["modprobe"]

        # Modules after a failing one are left as they are
        for module in modules:
            result = self.runner.run(action + [module])
            if result.not_installed:
                raise DriverSkipped(SkipReason.NOT_PRESENT)
            if not result.ok:
                raise DriverFailed(f"{module}: {result.reason}")

    def read(self, inventory: Inventory) -> str:
        if not inventory.gpus:
            raise QueryUnavailable("no gpu classified")
        gpu = inventory.gpus[0]
        if not gpu.supports(PRESENT):
            return skipped(SkipReason.NOT_PRESENT)
        if not self.config.gpu_modules:
            raise QueryUnavailable("no gpu modules configured")
        return "loaded" if self.is_loaded(self.config.gpu_modules[0]) else "unloaded"


class NetworkLinkDriver(SubsystemDriver):
    """Administrative link state of non-protected interfaces."""

    name = "network-link"
    inventory_field = "interfaces"
    unknown = ()

    def operation(self, profile: PowerProfile) -> str:
        return "link down" if profile is PowerProfile.POWERSAVE else "link up"

    def apply_to(self, resource: ManagedResource, profile: PowerProfile) -> None:
        if profile is PowerProfile.POWERSAVE:
            if resource.protected:
                raise DriverSkipped(SkipReason.PROTECTED)
            state = "down"
        else:
            state = "up"
        self._check(self.runner.run(["ip", "link", "set", "dev", resource.identifier, state]))

    def read(self, inventory: Inventory) -> Tuple[Tuple[str, str], ...]:
        return tuple((iface.identifier, self._link_state(iface.identifier))
                     for iface in inventory.interfaces)

    def _link_state(self, name: str) -> str:
        flags = self.runner.read(os.path.join(self.config.net_root, name, "flags"))
        try:
            return "up" if int(flags, 16) & IFF_UP else "down"
        except (TypeError, ValueError):
            return UNKNOWN


class UsbAutosuspendDriver(SubsystemDriver):
    """USB runtime power management; applied on entry only."""

    name = "usb-autosuspend"
    inventory_field = "usb_nodes"
    restorable = False

    def operation(self, profile: PowerProfile) -> str:
        return "autosuspend"

    def _control(self, device: str) -> str:
        return os.path.join(self.config.usb_root, device, "power", "control")

    def apply_to(self, resource: ManagedResource, profile: PowerProfile) -> None:
        self._require(resource, AUTOSUSPEND, SkipReason.NOT_PRESENT)
        self._check(self.runner.write(self._control(resource.identifier), "auto"))

    def read(self, inventory: Inventory) -> str:
        if not inventory.usb_nodes:
            raise QueryUnavailable("no usb power nodes")
        values = [self.runner.read(self._control(node.identifier)) for node in inventory.usb_nodes]
        return f"{values.count('auto')}/{len(values)} auto"


class PowerTuningDriver(SubsystemDriver):
    """One-shot ``powertop --auto-tune``; its effects do not survive a reboot."""

    name = "power-tuning"
    inventory_field = "power_tuners"
    restorable = False

    def operation(self, profile: PowerProfile) -> str:
        return "auto-tune"

    def apply_to(self, resource: ManagedResource, profile: PowerProfile) -> None:
        self._require(resource, PRESENT, SkipReason.NOT_PRESENT)
        self._check(self.runner.run([resource.identifier, "--auto-tune"]))

    def read(self, inventory: Inventory) -> str:
        if inventory.power_tuners and inventory.power_tuners[0].supports(PRESENT):
            return "transient"
        return skipped(SkipReason.NOT_PRESENT)


class AudioMuteDriver(SubsystemDriver):
    """Mute state of the default mixer control."""

    name = "audio-mute"
    inventory_field = "audio_sinks"

    def operation(self, profile: PowerProfile) -> str:
        return "mute" if profile is PowerProfile.POWERSAVE else "unmute"

    def apply_to(self, resource: ManagedResource, profile: PowerProfile) -> None:
        self._require(resource, PRESENT, SkipReason.NOT_PRESENT)
        self._check(self.runner.run(["amixer", "-q", "sset", resource.identifier, self.operation(profile)]))

    def read(self, inventory: Inventory) -> str:
        if not inventory.audio_sinks or not inventory.audio_sinks[0].supports(PRESENT):
            return skipped(SkipReason.NOT_PRESENT)
        result = self.runner.run(["amixer", "sget", inventory.audio_sinks[0].identifier])
        if not result.ok:
            raise QueryUnavailable(result.reason)
        states = _MIXER_STATE.findall(result.output)
        if not states:
            raise QueryUnavailable("no switch state in mixer output")
        return "unmuted" if "on" in states else "muted"


class DisplayOutputDriver(SubsystemDriver):
    """
    Turns connected display outputs off on entry.

    Outputs are not turned back on during restore: re-enabling them needs
    the session's layout, which is not available to a root process at wake.
    """

    name = "display-output"
    inventory_field = "displays"
    restorable = False
    unknown = ()

    def operation(self, profile: PowerProfile) -> str:
        return "output off"

    def apply(self, profile: PowerProfile, inventory: Inventory) -> List[TransitionOutcome]:
        if profile is PowerProfile.POWERSAVE and not inventory.graphical_session:
            return [TransitionOutcome.skipped(self.name, self.operation(profile),
                                              SkipReason.NO_GRAPHICAL_SESSION, self.name)]
        return super().apply(profile, inventory)

    def apply_to(self, resource: ManagedResource, profile: PowerProfile) -> None:
        self._check(self.runner.run(["xrandr", "--output", resource.identifier, "--off"]))

    def read(self, inventory: Inventory) -> Tuple[str, ...]:
        return tuple(display.identifier for display in inventory.displays)


DRIVER_CLASSES = (
    CpuGovernorDriver,
    PowersaveDaemonDriver,
    DiskSpindownDriver,
    GpuLifecycleDriver,
    NetworkLinkDriver,
    UsbAutosuspendDriver,
    PowerTuningDriver,
    AudioMuteDriver,
    DisplayOutputDriver,
)


def build_drivers(runner: CommandRunner = None, config: ConfigManager = None) -> Dict[str, SubsystemDriver]:
    """Instantiate every driver, keyed by name."""
    config = config or ConfigManager()
    runner = runner or CommandRunner(config)
    return {cls.name: cls(runner, config) for cls in DRIVER_CLASSES}
