#!/usr/bin/env python3
"""
Plain-text rendering of transition reports and status snapshots.

Pure functions: they return text and never print or log.
"""

from typing import Iterable, List

from .dispatcher import USAGE
from .models import UNKNOWN, PowerProfile, StatusSnapshot, TransitionOutcome, TransitionReport

RULE = "─" * 47


def render_outcomes(outcomes: Iterable[TransitionOutcome]) -> str:
    """One aligned line per outcome."""
    outcomes = list(outcomes)
    if not outcomes:
        return "(nothing to do)"
    width = max(len(o.resource) for o in outcomes)
    lines = []
    for o in outcomes:
        lines.append(f"   {o.resource.ljust(width)}  {o.operation:<20} {o}")
    return "\n".join(lines)


def render_transition(report: TransitionReport) -> str:
    title = "Low-power mode" if report.profile is PowerProfile.POWERSAVE else "Performance mode"
    summary = (f"{len(report.applied)} applied, {len(report.skipped)} skipped, "
               f"{len(report.failed)} failed")
    return "\n".join([f"{title}: {summary}", RULE, render_outcomes(report.outcomes)])


def _flag(value) -> str:
    if value is None:
        return UNKNOWN
    return "Active" if value else "Not active"


def render_status(snapshot: StatusSnapshot) -> str:
    lines: List[str] = [
        "[PowerMode] Current System Power Status",
        RULE,
        "",
        USAGE,
        "",
    ]
    mode = snapshot.power_mode.value if snapshot.power_mode else "(see fields)"
    lines.append(f"Power mode       : {mode}")
    governor = snapshot.cpu_governor
    if snapshot.cpu_mhz is not None:
        governor = f"{governor} ({snapshot.cpu_mhz} MHz avg)"
    lines.append(f"CPU Governor     : {governor}")
    lines.append(f"pm-powersave     : {_flag(snapshot.powersave_daemon_active)}")

    lines.append("Disk Spindown    :")
    for disk, state in snapshot.disks:
        lines.append(f"   └─ {disk} → {state}")

    lines.append(f"GPU Driver       : {snapshot.gpu}")

    lines.append("Network Links    :")
    for iface, state in snapshot.interfaces:
        lines.append(f"   └─ {iface} → {state}")

    lines.append(f"USB Autosuspend  : {snapshot.usb_autosuspend}")
    lines.append(f"Audio            : {snapshot.audio}")
    lines.append(f"Displays         : {', '.join(snapshot.displays) or 'none connected'}")
    tuning = snapshot.power_tuning
    if tuning == "transient":
        tuning = "Transient only – rerun to apply persistently"
    lines.append(f"Powertop Tune    : {tuning}")
    return "\n".join(lines)
