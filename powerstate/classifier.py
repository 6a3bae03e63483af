#!/usr/bin/env python3
"""
Resource discovery and classification.

Enumerates CPUs, disks, network interfaces, the GPU, USB power nodes,
the audio sink and display outputs, and decides for each one what kind of
resource it is and which operations apply to it. Nothing here changes
system state, and nothing here raises: a resource that cannot be read is
classified as ResourceKind.UNKNOWN.
"""

import glob
import logging
import os
import re
from dataclasses import dataclass
from typing import List, Mapping, Optional, Set, Tuple

from .commands import CommandRunner
from .config import ConfigManager
from .models import (
    AUTOSUSPEND, PRESENT, SPINDOWN,
    ManagedResource, ResourceKind,
)

_ROUTE_DEV = re.compile(r"\bdev\s+(\S+)")
_CONNECTED_OUTPUT = re.compile(r"^(\S+) connected\b", re.MULTILINE)
_CPU_DIR = re.compile(r"^cpu(\d+)$")


@dataclass(frozen=True)
class Inventory:
    """Everything discovered for one invocation, grouped by subsystem."""
    cpus: Tuple[ManagedResource, ...] = ()
    disks: Tuple[ManagedResource, ...] = ()
    interfaces: Tuple[ManagedResource, ...] = ()
    gpus: Tuple[ManagedResource, ...] = ()
    usb_nodes: Tuple[ManagedResource, ...] = ()
    audio_sinks: Tuple[ManagedResource, ...] = ()
    displays: Tuple[ManagedResource, ...] = ()
    power_daemons: Tuple[ManagedResource, ...] = ()
    power_tuners: Tuple[ManagedResource, ...] = ()
    graphical_session: bool = False
    disk_namespace_readable: bool = True


class ResourceClassifier:
    """
    Classifies managed resources from live OS state.

    Reads sysfs attributes and runs a handful of read-only utilities
    (``ip route get``, ``nvidia-smi``, ``xrandr --query``) through the
    command runner.
    """

    def __init__(self, runner: CommandRunner = None, config: ConfigManager = None,
                 environ: Mapping[str, str] = None):
        self.config = config or ConfigManager()
        self.runner = runner or CommandRunner(self.config)
        self.environ = os.environ if environ is None else environ

    def discover(self) -> Inventory:
        """Enumerate and classify every managed resource."""
        disks = self.discover_disks()
        displays = self.discover_displays()
        inventory = Inventory(
            cpus=tuple(self.discover_cpus()),
            disks=tuple(disks or ()),
            interfaces=tuple(self.discover_interfaces()),
            gpus=(self.classify_gpu(),),
            usb_nodes=tuple(self.discover_usb_nodes()),
            audio_sinks=(self._tool_resource(self.config.audio_control, "amixer",
                                             ResourceKind.AUDIO_SINK),),
            displays=tuple(displays or ()),
            power_daemons=(self._tool_resource(self.config.powersave_daemon,
                                               self.config.powersave_daemon,
                                               ResourceKind.POWER_DAEMON),),
            power_tuners=(self._tool_resource(self.config.power_tuning_tool,
                                              self.config.power_tuning_tool,
                                              ResourceKind.POWER_TUNER),),
            graphical_session=displays is not None,
            disk_namespace_readable=disks is not None,
        )
        logging.debug(
            "Discovered %d cpus, %d disks, %d interfaces, %d usb nodes, %d displays",
            len(inventory.cpus), len(inventory.disks), len(inventory.interfaces),
            len(inventory.usb_nodes), len(inventory.displays),
        )
        return inventory

    # ------------------------------------------------------------------
    # CPUs
    # ------------------------------------------------------------------

    def discover_cpus(self) -> List[ManagedResource]:
        cpus = []
        for path in glob.glob(os.path.join(self.config.cpu_root, "cpu[0-9]*")):
            match = _CPU_DIR.match(os.path.basename(path))
            if match and os.path.isdir(path):
                cpus.append((int(match.group(1)), os.path.basename(path)))
        return [ManagedResource(name, ResourceKind.LOGICAL_CPU) for _, name in sorted(cpus)]

    # ------------------------------------------------------------------
    # Disks
    # ------------------------------------------------------------------

    def discover_disks(self) -> Optional[List[ManagedResource]]:
        """Classify every disk matching the configured patterns.

        Returns None when the device directory itself cannot be read.
        """
        if not os.path.isdir(self.config.dev_root):
            logging.error("Cannot read device directory %s", self.config.dev_root)
            return None

        devices = []
        for pattern in self.config.disk_patterns:
            for device in sorted(glob.glob(os.path.join(self.config.dev_root, pattern))):
                if device not in devices:
                    devices.append(device)
        return [self.classify_disk(device) for device in devices]

    def classify_disk(self, device: str) -> ManagedResource:
        """Classify a disk as rotational, solid-state or NVMe."""
        name = os.path.basename(device)
        if name.startswith("nvme"):
            return ManagedResource(device, ResourceKind.NVME_DISK)

        rotational = self.runner.read(
            os.path.join(self.config.block_root, name, "queue", "rotational"))
        if rotational == "1":
            return ManagedResource(device, ResourceKind.ROTATIONAL_DISK, frozenset({SPINDOWN}))
        if rotational == "0":
            return ManagedResource(device, ResourceKind.SOLID_STATE_DISK)

        logging.debug("Cannot classify %s (rotational=%r)", device, rotational)
        return ManagedResource(device, ResourceKind.UNKNOWN)

    # ------------------------------------------------------------------
    # Network
    # ------------------------------------------------------------------

    def protected_interfaces(self) -> Optional[Set[str]]:
        """
        Interfaces carrying the default route or the SSH session.

        Returns None when no route could be resolved at all, in which case
        every interface must be treated as protected.
        """
        targets = [self.config.route_probe_address]
        ssh_connection = self.environ.get("SSH_CONNECTION", "").split()
        if ssh_connection:
            targets.append(ssh_connection[0])

        names = set()
        for address in targets:
            result = self.runner.run(["ip", "route", "get", address])
            if not result.ok:
                logging.debug("Route lookup for %s failed: %s", address, result.reason)
                continue
            match = _ROUTE_DEV.search(result.output)
            if match:
                names.add(match.group(1))
        return names or None

    def discover_interfaces(self) -> List[ManagedResource]:
        try:
            names = sorted(os.listdir(self.config.net_root))
        except OSError as exc:
            logging.warning("Cannot list network interfaces: %s", exc)
            return []

        names = [n for n in names if n not in self.config.network_exclude]
        if not names:
            return []

        protected = self.protected_interfaces()
        if protected is None:
            logging.warning("No route to %s resolved; protecting every interface",
                            self.config.route_probe_address)
        else:
            protected = self.with_lower_devices(protected, names)
        return [self.classify_interface(name, protected) for name in names]

    def upper_devices(self, name: str) -> Set[str]:
        """Devices ``name`` is enslaved to (bridge, bond) or stacked under (VLAN)."""
        iface = os.path.join(self.config.net_root, name)
        uppers = {os.path.basename(link)[len("upper_"):]
                  for link in glob.glob(os.path.join(iface, "upper_*"))}
        master = os.path.join(iface, "master")
        if os.path.islink(master):
            uppers.add(os.path.basename(os.readlink(master)))
        return uppers

    def with_lower_devices(self, protected: Set[str], names: List[str]) -> Set[str]:
        """
        Extend ``protected`` with every interface beneath a protected one.

        Follows ``master`` and ``upper_*`` links until no new interface is added.
        """
        protected = set(protected)
        while True:
            lower = {name for name in names
                     if name not in protected and self.upper_devices(name) & protected}
            if not lower:
                return protected
            logging.debug("Protecting %s beneath %s", ", ".join(sorted(lower)), ", ".join(sorted(protected)))
            protected |= lower

    @staticmethod
    def classify_interface(name: str, protected_names: Optional[Set[str]]) -> ManagedResource:
        protected = protected_names is None or name in protected_names
        return ManagedResource(name, ResourceKind.NETWORK_INTERFACE, protected=protected)

    # ------------------------------------------------------------------
    # GPU
    # ------------------------------------------------------------------

    def classify_gpu(self) -> ManagedResource:
        """
        Classify the GPU as absent, or present and busy/idle.

        The GPU is busy when it runs compute processes or when any of its
        modules is held open from userspace (a display server, a
        compositor). ``busy`` is None when the process list cannot be
        read (e.g. the driver is already unloaded).
        """
        identifier = self.config.gpu_modules[0] if self.config.gpu_modules else "gpu"
        tool = self.config.gpu_utility
        if not self.runner.which(tool):
            return ManagedResource(identifier, ResourceKind.GPU_ADAPTER)

        result = self.runner.run([tool, "--query-compute-apps=pid", "--format=csv,noheader"])
        if not result.ok:
            logging.debug("%s process query failed: %s", tool, result.reason)
            return ManagedResource(identifier, ResourceKind.GPU_ADAPTER,
                                   frozenset({PRESENT}), busy=None)

        compute = any(line.strip() for line in result.output.splitlines())
        users = {module: self.module_users(module) for module in self.config.gpu_modules}
        graphics = any(users.values())
        if graphics:
            logging.debug("GPU modules held open: %s",
                          ", ".join(f"{m}={n}" for m, n in users.items() if n))
        busy = compute or graphics
        return ManagedResource(identifier, ResourceKind.GPU_ADAPTER,
                               frozenset({PRESENT}), busy=busy)

    def module_users(self, module: str) -> int:
        """
        Userspace references to a loaded kernel module.

        ``refcnt`` counts dependent modules as well as open handles; the
        dependents are listed under ``holders``. 0 when unreadable.
        """
        path = os.path.join(self.config.module_root, module)
        try:
            refcnt = int(self.runner.read(os.path.join(path, "refcnt")))
        except (TypeError, ValueError):
            return 0
        try:
            holders = len(os.listdir(os.path.join(path, "holders")))
        except OSError:
            holders = 0
        return max(refcnt - holders, 0)

    # ------------------------------------------------------------------
    # USB, audio, display, tools
    # ------------------------------------------------------------------

    def discover_usb_nodes(self) -> List[ManagedResource]:
        nodes = []
        for control in sorted(glob.glob(os.path.join(self.config.usb_root, "*", "power", "control"))):
            device = os.path.basename(os.path.dirname(os.path.dirname(control)))
            nodes.append(ManagedResource(device, ResourceKind.USB_POWER_NODE, frozenset({AUTOSUSPEND})))
        return nodes

    def graphical_session(self) -> bool:
        return bool(self.environ.get("DISPLAY") or self.environ.get("WAYLAND_DISPLAY"))

    def discover_displays(self) -> Optional[List[ManagedResource]]:
        """Connected display outputs, or None without a graphical session."""
        if not self.graphical_session():
            return None
        if not self.runner.which("xrandr"):
            return []

        result = self.runner.run(["xrandr", "--query"])
        if not result.ok:
            logging.debug("xrandr query failed: %s", result.reason)
            return []
        return [ManagedResource(name, ResourceKind.DISPLAY_OUTPUT)
                for name in _CONNECTED_OUTPUT.findall(result.output)]

    def _tool_resource(self, identifier: str, tool: str, kind: ResourceKind) -> ManagedResource:
        """A resource backed by a single utility: present iff installed."""
        capabilities = frozenset({PRESENT}) if self.runner.which(tool) else frozenset()
        return ManagedResource(identifier, kind, capabilities)
