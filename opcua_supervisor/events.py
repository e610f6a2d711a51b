"""
Client event channel.

Lifecycle and domain notifications are published as ClientEvent records
tagged with a closed EventKind, so consumers can match on the kind instead
of on free-form channel names.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Iterable, Optional

from asyncua import ua

from .logging import SupervisorLogger, get_logger


class EventKind(Enum):
    """Every event the client facade can emit."""
    LOG = "log"
    ERROR = "error"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    SESSION_CLOSED = "session_closed"
    SESSION_TERMINATED = "session_terminated"
    BEFORE_WRITE = "beforeWrite"
    AFTER_WRITE = "afterWrite"
    BEFORE_MONITOR_ITEM = "beforeMonitorItem"
    AFTER_MONITOR_ITEM = "afterMonitorItem"
    BEFORE_MONITORING = "beforeMonitoring"
    AFTER_MONITORING = "afterMonitoring"
    BEFORE_BROWSING = "beforeBrowsing"
    AFTER_BROWSING = "afterBrowsing"
    ITEM_CHANGED = "itemChanged"


@dataclass(frozen=True)
class ClientEvent:
    """
    One published event.

    Fields that do not apply to a kind are left at their defaults:
    node_id/value for item and write events, message for LOG/ERROR,
    error for ERROR.
    """
    kind: EventKind
    node_id: Optional[ua.NodeId] = None
    value: Any = None
    message: str = ""
    error: Optional[BaseException] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


EventHandler = Callable[[ClientEvent], None]


class EventBus:
    """
    In-process observer registry.

    Handlers run synchronously in emit order and must not block; a
    handler that raises is logged and the remaining handlers still run.
    """

    def __init__(self, logger: Optional[SupervisorLogger] = None):
        self.logger = logger or get_logger("events")
        self._handlers: dict[int, tuple[EventHandler, Optional[frozenset]]] = {}
        self._next_token = 0

    def subscribe(
        self,
        handler: EventHandler,
        kinds: Optional[Iterable[EventKind]] = None
    ) -> int:
        """
        Register a handler.

        Args:
            handler: Callable receiving ClientEvent
            kinds: Restrict delivery to these kinds (all kinds when None)

        Returns:
            Token to pass to unsubscribe
        """
        token = self._next_token
        self._next_token += 1
        self._handlers[token] = (handler, frozenset(kinds) if kinds is not None else None)
        return token

    def unsubscribe(self, token: int) -> bool:
        return self._handlers.pop(token, None) is not None

    def emit(self, event: ClientEvent) -> None:
        for handler, kinds in list(self._handlers.values()):
            if kinds is not None and event.kind not in kinds:
                continue
            try:
                handler(event)
            except Exception as e:
                # Not routed through self.logger: LOG events would recurse
                self.logger.debug(f"Event handler failed for {event.kind.value}: {e}")
