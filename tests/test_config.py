from __future__ import annotations

from pathlib import Path

import pytest

from powerstate.config import ConfigManager


def test_defaults_without_file() -> None:
    config = ConfigManager()

    assert config.governors == {"powersave": "powersave", "performance": "ondemand"}
    assert config.spindown_timeout == 120
    assert config.gpu_modules[0] == "nvidia"
    assert config.network_exclude == ["lo"]
    assert config.disk_patterns == ["sd[a-z]", "nvme*n1"]


def test_singleton() -> None:
    assert ConfigManager() is ConfigManager()


def test_yaml_overrides_and_merges_governors(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text(
        "governors:\n"
        "  performance: schedutil\n"
        "spindown_timeout: 60\n"
        "command_timeout: 2\n",
        encoding="utf-8",
    )

    config = ConfigManager(str(path))

    assert config.governors == {"powersave": "powersave", "performance": "schedutil"}
    assert config.spindown_timeout == 60
    assert config.command_timeout == 2


def test_empty_yaml_file_gives_defaults(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text("", encoding="utf-8")

    assert ConfigManager(str(path)).spindown_timeout == 120


def test_missing_file_raises(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        ConfigManager(str(tmp_path / "nope.yaml"))


def test_invalid_yaml_raises_value_error(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text("governors: [unclosed\n", encoding="utf-8")

    with pytest.raises(ValueError):
        ConfigManager(str(path))


def test_shipped_example_config_loads() -> None:
    path = Path(__file__).resolve().parent.parent / "config.yaml"

    config = ConfigManager(str(path))

    assert config.gpu_modules == ["nvidia", "nvidia_modeset", "nvidia_drm", "nvidia_uvm"]
    assert config.route_probe_address == "8.8.8.8"
