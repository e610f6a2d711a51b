"""OPC UA supervisory client exception classes.

All exceptions inherit from SupervisorError. Catch SupervisorError to handle
any client error; use the subclasses for finer-grained handling.

Exception hierarchy and optional context:
- SupervisorError: base
- SessionConnectionError: endpoint
- NotFoundError: base for missing things
  - NodeNotFoundError: node_id
  - CacheNotFoundError: path
- CacheParseError: path
- BusyError: (no context)
- UnsupportedTypeError: category, type_code
- InvalidValueError: value, variant_type
- DuplicateRegistrationError: node_id
- NothingToMonitorError: (no context)
- SubscriptionActiveError: (no context)
"""

from typing import Any, Optional

__all__ = [
    "SupervisorError",
    "SessionConnectionError",
    "NotFoundError",
    "NodeNotFoundError",
    "CacheNotFoundError",
    "CacheParseError",
    "BusyError",
    "UnsupportedTypeError",
    "InvalidValueError",
    "DuplicateRegistrationError",
    "NothingToMonitorError",
    "SubscriptionActiveError",
]


class SupervisorError(Exception):
    """Base exception for all client errors."""

    pass


class SessionConnectionError(SupervisorError):
    """Raised when the transport cannot connect or loses the session."""

    def __init__(self, message: str, endpoint: Optional[str] = None) -> None:
        super().__init__(message)
        self.endpoint = endpoint


class NotFoundError(SupervisorError):
    """Raised when a requested node or file does not exist."""

    pass


class NodeNotFoundError(NotFoundError):
    """Raised when a node id is not known to the monitored set or cache."""

    def __init__(self, message: str, node_id: Any = None) -> None:
        super().__init__(message)
        self.node_id = node_id


class CacheNotFoundError(NotFoundError):
    """Raised when the cache file does not exist."""

    def __init__(self, message: str, path: Optional[str] = None) -> None:
        super().__init__(message)
        self.path = path


class CacheParseError(SupervisorError):
    """Raised when the cache file holds malformed content."""

    def __init__(self, message: str, path: Optional[str] = None) -> None:
        super().__init__(message)
        self.path = path


class BusyError(SupervisorError):
    """Raised when a browse is already in progress."""

    pass


class UnsupportedTypeError(SupervisorError):
    """Raised when no write coercion rule exists for a value."""

    def __init__(
        self,
        message: str,
        category: Any = None,
        type_code: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.category = category
        self.type_code = type_code


class InvalidValueError(SupervisorError, ValueError):
    """Raised when a proposed value cannot be parsed for its wire type."""

    def __init__(self, message: str, value: Any = None, variant_type: Any = None) -> None:
        super().__init__(message)
        self.value = value
        self.variant_type = variant_type


class DuplicateRegistrationError(SupervisorError):
    """Raised when a node id is registered for monitoring twice."""

    def __init__(self, message: str, node_id: Any = None) -> None:
        super().__init__(message)
        self.node_id = node_id


class NothingToMonitorError(SupervisorError):
    """Raised when monitoring is started with no registered items."""

    pass


class SubscriptionActiveError(SupervisorError):
    """Raised when monitoring is started while a subscription is live."""

    pass
