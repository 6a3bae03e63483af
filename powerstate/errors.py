#!/usr/bin/env python3
"""
Error types.

Only PreconditionError, UsageError and OrchestrationError end an
invocation. The others are raised and caught inside a single driver or
query and end up as outcomes or "Unknown" fields.
"""


class PowerStateError(Exception):
    """Base class for all power state errors."""


class PreconditionError(PowerStateError):
    """The tool is not running with the privileges it needs."""


class UsageError(PowerStateError):
    """The requested action is not recognized."""


class OrchestrationError(PowerStateError):
    """A whole transition cannot run, e.g. no CPU could be enumerated."""


class ClassificationUnavailable(PowerStateError):
    """The kind of a resource could not be determined."""


class DriverSkipped(PowerStateError):
    """The operation does not apply to this resource."""

    def __init__(self, reason):
        super().__init__(str(reason))
        self.reason = reason


class DriverFailed(PowerStateError):
    """The external facility rejected or errored on the operation."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class QueryUnavailable(PowerStateError):
    """A status read failed."""
