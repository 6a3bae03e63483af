#!/usr/bin/env python3
"""
Configuration manager for the power state tool.

Handles loading and accessing configuration from a YAML file. Every key
has a built-in default, so the tool also runs without any file at all.
"""

import os
from typing import Dict, List, Any

import yaml


DEFAULT_PACKAGES = {
    "cpufreq-set": "cpufrequtils",
    "hdparm": "hdparm",
    "pm-powersave": "pm-utils",
    "powertop": "powertop",
    "ip": "iproute2",
    "modprobe": "kmod",
    "amixer": "alsa-utils",
    "xrandr": "x11-xserver-utils",
    "lshw": "lshw",
}


class ConfigManager:
    """
    Manages loading and accessing configuration from YAML file.
    Supports reloading configuration at runtime.
    """

    _instance = None

    def __new__(cls, config_path=None):
        """Singleton pattern to ensure only one config instance exists."""
        if cls._instance is None:
            cls._instance = super(ConfigManager, cls).__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self, config_path=None):
        """Initialize the configuration manager with a config file path."""
        if self._initialized:
            return

        self.config_path = config_path
        self._config = {}

        if config_path:
            self.reload()

        self._initialized = True

    def reload(self) -> None:
        """Reload configuration from YAML file."""
        if not self.config_path or not os.path.exists(self.config_path):
            raise FileNotFoundError(f"Configuration file not found: {self.config_path}")

        try:
            with open(self.config_path, "r") as f:
                self._config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Error loading configuration: {str(e)}")

        if not isinstance(self._config, dict):
            raise ValueError(f"Error loading configuration: expected a mapping in {self.config_path}")

    def update(self, values: Dict[str, Any]) -> None:
        """Override individual keys, e.g. from tests or command-line flags."""
        self._config.update(values)

    # ------------------------------------------------------------------
    # Logging and timeouts
    # ------------------------------------------------------------------

    @property
    def log_file(self) -> str:
        """Log file for tool output."""
        return self._config.get("log_file", "/var/log/power_state.log")

    @property
    def log_prefix(self) -> str:
        return self._config.get("log_prefix", "[PowerMode]")

    @property
    def command_timeout(self) -> float:
        """Upper bound (seconds) for any single external command."""
        return self._config.get("command_timeout", 5)

    @property
    def install_timeout(self) -> float:
        """Upper bound (seconds) for the package manager during install."""
        return self._config.get("install_timeout", 600)

    # ------------------------------------------------------------------
    # OS namespaces
    # ------------------------------------------------------------------

    @property
    def cpu_root(self) -> str:
        return self._config.get("cpu_root", "/sys/devices/system/cpu")

    @property
    def dev_root(self) -> str:
        return self._config.get("dev_root", "/dev")

    @property
    def block_root(self) -> str:
        return self._config.get("block_root", "/sys/block")

    @property
    def net_root(self) -> str:
        return self._config.get("net_root", "/sys/class/net")

    @property
    def usb_root(self) -> str:
        return self._config.get("usb_root", "/sys/bus/usb/devices")

    @property
    def module_root(self) -> str:
        """Where loaded kernel modules show up (one directory per module)."""
        return self._config.get("module_root", "/sys/module")

    @property
    def disk_patterns(self) -> List[str]:
        """Glob patterns, relative to dev_root, of disks to manage."""
        return self._config.get("disk_patterns", ["sd[a-z]", "nvme*n1"])

    # ------------------------------------------------------------------
    # Profile settings
    # ------------------------------------------------------------------

    @property
    def governors(self) -> Dict[str, str]:
        """Scaling governor to set for each profile."""
        governors = {"powersave": "powersave", "performance": "ondemand"}
        governors.update(self._config.get("governors", {}))
        return governors

    @property
    def spindown_timeout(self) -> int:
        """hdparm -S idle timeout on entering powersave (vendor-scaled, see hdparm(8))."""
        return self._config.get("spindown_timeout", 120)

    @property
    def gpu_utility(self) -> str:
        return self._config.get("gpu_utility", "nvidia-smi")

    @property
    def gpu_modules(self) -> List[str]:
        """Kernel modules of the GPU driver in load order (core module first)."""
        return self._config.get("gpu_modules", ["nvidia", "nvidia_modeset", "nvidia_drm", "nvidia_uvm"])

    @property
    def route_probe_address(self) -> str:
        """Well-known address used to find the default-route interface."""
        return self._config.get("route_probe_address", "8.8.8.8")

    @property
    def network_exclude(self) -> List[str]:
        """Interfaces never managed at all."""
        return self._config.get("network_exclude", ["lo"])

    @property
    def audio_control(self) -> str:
        return self._config.get("audio_control", "Master")

    @property
    def powersave_daemon(self) -> str:
        return self._config.get("powersave_daemon", "pm-powersave")

    @property
    def power_tuning_tool(self) -> str:
        return self._config.get("power_tuning_tool", "powertop")

    @property
    def packages(self) -> Dict[str, str]:
        """External utility -> distribution package providing it."""
        return self._config.get("packages", DEFAULT_PACKAGES)

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value by key."""
        return self._config.get(key, default)
