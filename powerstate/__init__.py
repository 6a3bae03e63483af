"""
Power State Control Package.

Switches a Linux host between performance and powersave profiles by
coordinating CPU, disk, GPU, network, USB, audio and display settings,
and reports the state of each.
"""

__version__ = "0.2.0"

# Core components
from .config import ConfigManager
from .events import event_bus
from .models import PowerProfile, ManagedResource, TransitionOutcome, TransitionReport, StatusSnapshot
from .classifier import ResourceClassifier, Inventory
from .orchestrator import TransitionOrchestrator
from .status import StatusAggregator
from .dispatcher import ProfileDispatcher

# Re-export key components for easier importing by external modules/scripts if any.
# For internal use, direct imports like `from .config import ConfigManager` are preferred.
__all__ = [
    "ConfigManager",
    "event_bus",
    "PowerProfile", "ManagedResource", "TransitionOutcome", "TransitionReport", "StatusSnapshot",
    "ResourceClassifier", "Inventory",
    "TransitionOrchestrator",
    "StatusAggregator",
    "ProfileDispatcher",
    "__version__"
]
