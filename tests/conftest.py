from __future__ import annotations

import shutil
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import pytest

from powerstate.classifier import ResourceClassifier
from powerstate.commands import NOT_INSTALLED, CommandResult, CommandRunner
from powerstate.config import ConfigManager
from powerstate.drivers import build_drivers
from powerstate.events import event_bus
from powerstate.orchestrator import TransitionOrchestrator
from powerstate.status import StatusAggregator

DEFAULT_TOOLS = ("ip", "hdparm", "modprobe", "pgrep", "pm-powersave", "powertop", "amixer")


def _ok(output: str = "") -> CommandResult:
    return CommandResult(True, output, returncode=0)


def _fail(reason: str, returncode: int = 1) -> CommandResult:
    return CommandResult(False, reason=reason, returncode=returncode)


class FakeHost(CommandRunner):
    """
    A command runner backed by a fake sysfs tree and simulated utilities.

    sysfs reads and writes go to real files below ``root``; external
    commands are recorded in ``calls`` and answered by small state machines
    that mimic the real tools closely enough for the drivers.
    """

    def __init__(self, root: Path, config: ConfigManager):
        super().__init__(config)
        self.root = root
        self.tools = set(DEFAULT_TOOLS)
        self.calls: List[Tuple[str, ...]] = []
        self.overrides: Dict[str, Callable[[List[str]], CommandResult]] = {}

        self.routes: Dict[str, str] = {}
        self.spindown: Dict[str, int] = {}
        self.gpu_pids: List[str] = []
        self.gpu_query_fails = False
        self.powersave_active = False
        self.muted = False
        self.connected_displays: List[str] = []
        self.displays_off: List[str] = []

        for key in ("cpu_root", "dev_root", "block_root", "net_root", "usb_root", "module_root"):
            path = root / key
            path.mkdir(parents=True, exist_ok=True)
            config.update({key: str(path)})
        # Siblings of the cpuN directories that must not be taken for CPUs
        (root / "cpu_root" / "cpufreq").mkdir()
        (root / "cpu_root" / "cpuidle").mkdir()

    # -- sysfs builders --------------------------------------------------

    def add_cpu(self, index: int, governor: str = "ondemand", khz: Optional[int] = 2000000) -> None:
        cpufreq = self.root / "cpu_root" / f"cpu{index}" / "cpufreq"
        cpufreq.mkdir(parents=True)
        (cpufreq / "scaling_governor").write_text(f"{governor}\n")
        if khz is not None:
            (cpufreq / "scaling_cur_freq").write_text(f"{khz}\n")

    def governor(self, index: int) -> str:
        path = self.root / "cpu_root" / f"cpu{index}" / "cpufreq" / "scaling_governor"
        return path.read_text().strip()

    def add_disk(self, name: str, rotational: Optional[str] = "1") -> None:
        (self.root / "dev_root" / name).write_text("")
        if rotational is not None:
            queue = self.root / "block_root" / name / "queue"
            queue.mkdir(parents=True)
            (queue / "rotational").write_text(f"{rotational}\n")

    def add_interface(self, name: str, up: bool = True, master: Optional[str] = None,
                      upper: Optional[str] = None) -> None:
        iface = self.root / "net_root" / name
        iface.mkdir()
        (iface / "flags").write_text("0x1003\n" if up else "0x1002\n")
        # sysfs links are relative; only the basename is read
        if master is not None:
            (iface / "master").symlink_to(f"../{master}")
        if upper is not None:
            (iface / f"upper_{upper}").symlink_to(f"../{upper}")

    def link_state(self, name: str) -> str:
        flags = int((self.root / "net_root" / name / "flags").read_text(), 16)
        return "up" if flags & 0x1 else "down"

    def add_usb(self, device: str, control: str = "on") -> None:
        power = self.root / "usb_root" / device / "power"
        power.mkdir(parents=True)
        (power / "control").write_text(f"{control}\n")

    def usb_control(self, device: str) -> str:
        return (self.root / "usb_root" / device / "power" / "control").read_text().strip()

    def load_module(self, name: str) -> None:
        (self.root / "module_root" / name).mkdir(exist_ok=True)

    def set_module_users(self, name: str, users: int, holders: Sequence[str] = ()) -> None:
        """Give a loaded module ``users`` open handles plus one reference per holder module."""
        module = self.root / "module_root" / name
        (module / "holders").mkdir(parents=True, exist_ok=True)
        for holder in holders:
            (module / "holders" / holder).mkdir(exist_ok=True)
        (module / "refcnt").write_text(f"{users + len(holders)}\n")

    def module_loaded(self, name: str) -> bool:
        return (self.root / "module_root" / name).is_dir()

    def with_gpu(self, *pids: str) -> None:
        self.tools.add("nvidia-smi")
        self.gpu_pids = list(pids)
        for module in self.config.gpu_modules:
            self.load_module(module)

    # -- CommandRunner ---------------------------------------------------

    def which(self, tool: str) -> Optional[str]:
        return f"/usr/bin/{tool}" if tool in self.tools else None

    def run(self, argv: Sequence[str], timeout: float = None) -> CommandResult:
        argv = list(argv)
        self.calls.append(tuple(argv))
        program = argv[0]
        if program not in self.tools:
            return CommandResult(False, reason=NOT_INSTALLED)
        handler = self.overrides.get(program) or getattr(self, "_" + program.replace("-", "_"), None)
        if handler is None:
            return _ok()
        return handler(argv)

    def calls_to(self, program: str) -> List[Tuple[str, ...]]:
        return [call for call in self.calls if call[0] == program]

    # -- simulated utilities ---------------------------------------------

    def _ip(self, argv: List[str]) -> CommandResult:
        if argv[1:3] == ["route", "get"]:
            dev = self.routes.get(argv[3])
            if dev is None:
                return _fail("exit status 2: RTNETLINK answers: Network is unreachable", 2)
            return _ok(f"{argv[3]} via 192.168.1.1 dev {dev} src 192.168.1.20 uid 0\n    cache\n")
        if argv[1:4] == ["link", "set", "dev"]:
            flags = self.root / "net_root" / argv[4] / "flags"
            flags.write_text("0x1003\n" if argv[5] == "up" else "0x1002\n")
            return _ok()
        return _fail("exit status 1: unsupported")

    def _hdparm(self, argv: List[str]) -> CommandResult:
        if argv[1] == "-S":
            self.spindown[argv[3]] = int(argv[2])
            return _ok(f"\n{argv[3]}:\n setting standby to {argv[2]}\n")
        if argv[1] == "-I":
            level = self.spindown.get(argv[2], 0)
            return _ok(f"\n{argv[2]}:\n\nATA device\n\tAdvanced power management level: {level}\n")
        return _fail("exit status 1: bad option")

    def _modprobe(self, argv: List[str]) -> CommandResult:
        if argv[1] == "-r":
            shutil.rmtree(self.root / "module_root" / argv[2], ignore_errors=True)
        else:
            self.load_module(argv[1])
        return _ok()

    def _nvidia_smi(self, argv: List[str]) -> CommandResult:
        if self.gpu_query_fails or not self.module_loaded(self.config.gpu_modules[0]):
            return _fail("exit status 9: NVIDIA-SMI has failed", 9)
        return _ok("".join(f"{pid}\n" for pid in self.gpu_pids))

    def _pm_powersave(self, argv: List[str]) -> CommandResult:
        self.powersave_active = argv[1] == "true"
        return _ok()

    def _pgrep(self, argv: List[str]) -> CommandResult:
        return _ok("4242\n") if self.powersave_active else CommandResult(False, returncode=1, reason="exit status 1")

    def _amixer(self, argv: List[str]) -> CommandResult:
        if "sset" in argv:
            self.muted = argv[-1] == "mute"
            return _ok()
        switch = "off" if self.muted else "on"
        return _ok(f"Simple mixer control 'Master',0\n  Mono: Playback 65536 [100%] [{switch}]\n")

    def _xrandr(self, argv: List[str]) -> CommandResult:
        if argv[1] == "--query":
            lines = ["Screen 0: minimum 320 x 200, current 1920 x 1080"]
            for name in self.connected_displays:
                lines.append(f"{name} connected primary 1920x1080+0+0 (normal left inverted) 344mm x 193mm")
            lines.append("HDMI-1 disconnected (normal left inverted right x axis y axis)")
            return _ok("\n".join(lines) + "\n")
        self.displays_off.append(argv[2])
        return _ok()

    def _cpufreq_set(self, argv: List[str]) -> CommandResult:
        path = self.root / "cpu_root" / f"cpu{argv[2]}" / "cpufreq" / "scaling_governor"
        path.write_text(argv[4] + "\n")
        return _ok()


@pytest.fixture(autouse=True)
def fresh_singletons():
    ConfigManager._instance = None
    event_bus.clear()
    yield
    ConfigManager._instance = None
    event_bus.clear()


@pytest.fixture
def config() -> ConfigManager:
    return ConfigManager()


@pytest.fixture
def host(tmp_path: Path, config: ConfigManager) -> FakeHost:
    """A two-CPU host with one rotational disk and two interfaces, eth0 carrying the route."""
    fake = FakeHost(tmp_path, config)
    fake.add_cpu(0)
    fake.add_cpu(1, khz=3000000)
    fake.add_disk("sda", "1")
    fake.add_interface("eth0")
    fake.add_interface("wlan0")
    fake.add_interface("lo")
    fake.routes[config.route_probe_address] = "eth0"
    return fake


@pytest.fixture
def classifier(host: FakeHost, config: ConfigManager) -> ResourceClassifier:
    return ResourceClassifier(host, config, environ={})


@pytest.fixture
def orchestrator(host, classifier, config) -> TransitionOrchestrator:
    return TransitionOrchestrator(classifier, build_drivers(host, config), config)


@pytest.fixture
def aggregator(host, classifier, config) -> StatusAggregator:
    return StatusAggregator(classifier, build_drivers(host, config), config)


@pytest.fixture
def make_host(tmp_path: Path, config: ConfigManager) -> Callable[[str], FakeHost]:
    """Factory for an empty host, for tests that need a bare machine."""
    def _make(name: str) -> FakeHost:
        return FakeHost(tmp_path / name, config)
    return _make
