"""
Event system for the voice terminal.

The audio core never calls into a UI toolkit. It publishes the typed
dataclasses below through an EventEmitter and whoever presents state
(terminal printer, level meter, tests) subscribes to them.
"""
import logging
import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Type

logger = logging.getLogger(__name__)


@dataclass
class LevelChanged:
    """Transmit-path level measured by the VOX detector."""
    level_db: float
    timestamp: float = field(default_factory=time.monotonic)


@dataclass
class VoxStateChanged:
    """VOX detector entered a new state."""
    state: Any  # core.audio.states.VoxState
    timestamp: float = field(default_factory=time.monotonic)


@dataclass
class TransmitChanged:
    """Transmit path opened or closed."""
    active: bool
    timestamp: float = field(default_factory=time.monotonic)


@dataclass
class ReceiveChanged:
    """Remote station started or stopped sending audio."""
    active: bool
    timestamp: float = field(default_factory=time.monotonic)


@dataclass
class ConnectionChanged:
    """Connection state reported by the remote endpoint."""
    state: Any  # core.audio.states.ConnectionState
    timestamp: float = field(default_factory=time.monotonic)


@dataclass
class DeviceError:
    """An audio device could not be opened."""
    device: str
    role: str  # "capture" or "playback"
    message: str
    recoverable: bool = True
    timestamp: float = field(default_factory=time.monotonic)


@dataclass
class PipelineError:
    """The audio pipeline could not be built for this call."""
    message: str
    error: Optional[Exception] = None
    recoverable: bool = False
    timestamp: float = field(default_factory=time.monotonic)


Listener = Callable[[Any], None]


class EventEmitter:
    """
    Listener registry keyed by event type.

    Listeners registered for ``object`` receive every event. Listeners run
    synchronously in registration order; a failing listener is logged and
    does not stop the others.
    """

    def __init__(self):
        self._listeners: Dict[type, List[Listener]] = defaultdict(list)

    def subscribe(self, event_type: Type, listener: Listener) -> Callable[[], None]:
        """
        Register a listener for an event type.

        Returns:
            A callable that removes the registration again
        """
        self._listeners[event_type].append(listener)

        def unsubscribe():
            try:
                self._listeners[event_type].remove(listener)
            except ValueError:
                pass

        return unsubscribe

    def emit(self, event: Any) -> None:
        """Deliver an event to listeners of its type and to catch-all listeners."""
        for listener in list(self._listeners.get(type(event), ())) + list(self._listeners.get(object, ())):
            try:
                listener(event)
            except Exception:
                logger.exception("Event listener failed for %s", type(event).__name__)

    def clear(self) -> None:
        """Drop every registration."""
        self._listeners.clear()


class EventRecorder:
    """Collects every emitted event in order; handy for traces and status dumps."""

    def __init__(self, emitter: EventEmitter):
        self.events: List[Any] = []
        self._unsubscribe = emitter.subscribe(object, self.events.append)

    def of_type(self, event_type: Type) -> List[Any]:
        return [e for e in self.events if isinstance(e, event_type)]

    def close(self) -> None:
        self._unsubscribe()
