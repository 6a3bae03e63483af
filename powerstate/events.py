#!/usr/bin/env python3
"""
In-process notifications for transitions and command execution.

The orchestrator announces progress and the command runner announces each
utility it ran; the command line layer listens to turn those into log
lines. Published events:

- ``transition_started``: the target PowerProfile
- ``outcome_recorded``: a TransitionOutcome, as soon as it is known
- ``transition_finished``: the complete TransitionReport
- ``command_executed``: ``(argv, CommandResult)``
"""

from typing import Any, Callable, Dict, List

Handler = Callable[[Any], None]


class EventBus:
    """Process-wide registry of event handlers, keyed by event name."""
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(EventBus, cls).__new__(cls)
            cls._instance._subscribers = {}
        return cls._instance

    def __init__(self):
        if not hasattr(self, '_subscribers'):
            self._subscribers: Dict[str, List[Handler]] = {}

    def subscribe(self, event_name: str, callback: Handler) -> None:
        self._subscribers.setdefault(event_name, []).append(callback)

    def unsubscribe(self, event_name: str, callback: Handler) -> None:
        """Remove ``callback``; unknown handlers are ignored."""
        handlers = self._subscribers.get(event_name, [])
        if callback in handlers:
            handlers.remove(callback)

    def clear(self) -> None:
        self._subscribers.clear()

    def publish(self, event_name: str, payload: Any = None) -> None:
        """
        Call every handler of ``event_name`` with ``payload``, in
        subscription order.

        Handlers may unsubscribe themselves while being called.
        """
        for callback in list(self._subscribers.get(event_name, [])):
            callback(payload)


event_bus = EventBus()
