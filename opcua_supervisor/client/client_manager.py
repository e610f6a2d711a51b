"""
OPC UA Client Manager.

This module provides the client facade: session lifecycle, discovery,
monitoring and typed writes, wired together and reported through the
EventBus.
"""

from typing import Any, List, Optional

from asyncua import ua

from ..address_space import AddressSpaceCache
from ..config import ClientConfig
from ..errors import (
    DuplicateRegistrationError,
    NodeNotFoundError,
    SessionConnectionError,
    SupervisorError,
)
from ..events import ClientEvent, EventBus, EventKind
from ..logging import SupervisorLogger, get_logger
from ..session import AsyncuaSession, Credentials, Session, SessionStatus
from ..types.models import (
    ChangeEvent,
    DiscoveredItem,
    MonitoredItemSpec,
    NodeIdLike,
    ValueCategory,
    to_node_id,
)
from ..types.type_coercer import TypeCoercer
from .browse_engine import BrowseEngine
from .monitor_manager import MonitorManager


class OpcuaClientManager:
    """
    Supervisory client for one controller.

    Owns one session, one address space cache and one monitored item set.
    Writes are only accepted for monitored items; every other node is
    read-only through this class. Write and registration failures are
    reported as ERROR events and return a falsy result, browse failures
    propagate to the caller.

    Usage:
        async with OpcuaClientManager(config) as plc:
            await plc.browse("ns=4;s=|var|PLC.Application", monitor=True)
            await plc.start_monitoring()
    """

    def __init__(
        self,
        config: ClientConfig,
        session: Optional[Session] = None,
        logger: Optional[SupervisorLogger] = None,
        events: Optional[EventBus] = None
    ):
        """
        Initialize the client manager.

        Args:
            config: Client configuration
            session: Session implementation, AsyncuaSession when omitted
            logger: Logger for this client and its components
            events: Event bus to publish on
        """
        self.config = config
        self.logger = logger or get_logger("client")
        self.events = events or EventBus(self.logger.child("events"))
        self.logger.add_listener(self._forward_log)

        self.logger.info(f"=== Client for {config.connection.endpoint_url} ===")

        if session is None:
            conn = config.connection
            session = AsyncuaSession(
                timeout_s=conn.timeout_s,
                initial_delay_ms=conn.initial_delay_ms,
                max_retry=conn.max_retry,
                keepalive_interval_s=conn.keepalive_interval_s,
                logger=self.logger.child("session"),
            )
        self.session = session
        self.session.add_status_listener(self._on_session_status)

        self.cache = AddressSpaceCache(
            directory=config.cache.directory,
            filename=config.cache.filename,
            logger=self.logger.child("cache"),
        )
        self.monitor_manager = MonitorManager(
            session=self.session,
            qos=config.subscription,
            sampling=config.sampling,
            logger=self.logger.child("monitor"),
        )
        self.browse_engine = BrowseEngine(
            session=self.session,
            cache=self.cache,
            monitor_manager=self.monitor_manager,
            logger=self.logger.child("browse"),
        )
        self.coercer = TypeCoercer(
            record_factory=self.session.construct_typed_record,
            logger=self.logger.child("coercer"),
        )
        self.monitor_manager.subscribe(self._on_item_changed)

        self._connected = False

    async def __aenter__(self) -> 'OpcuaClientManager':
        if not await self.connect():
            raise SessionConnectionError(
                f"Could not connect to {self.config.connection.endpoint_url}",
                endpoint=self.config.connection.endpoint_url,
            )
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.disconnect()

    # Lifecycle

    async def connect(self) -> bool:
        """
        Connect to the endpoint and activate a session.

        Returns:
            True when the session is active
        """
        conn = self.config.connection
        try:
            await self.session.connect(conn.endpoint_url)
            self.logger.info("Creating session")
            await self.session.create_session(
                Credentials(username=conn.username, password=conn.password)
            )
        except SessionConnectionError as e:
            self._report_error(e)
            return False

        self._connected = True
        self.logger.info("Session created")
        self._emit(EventKind.CONNECTED)
        return True

    async def close(self) -> None:
        """Terminate the subscription and close the session, if open."""
        try:
            if await self.monitor_manager.close():
                self._emit(EventKind.SESSION_TERMINATED)
        except Exception as e:
            self._report_error(e)

        if not self.session.is_active:
            return
        try:
            await self.session.close()
            self._emit(EventKind.SESSION_CLOSED)
        except Exception as e:
            self._report_error(e)

    async def disconnect(self) -> None:
        """Close everything, stop change delivery and drop the connection."""
        await self.close()
        try:
            await self.monitor_manager.shutdown()
        except Exception as e:
            self._report_error(e)
        try:
            await self.session.disconnect()
        except Exception as e:
            self._report_error(e)

        if self._connected:
            self._connected = False
            self._emit(EventKind.DISCONNECTED)

    def ping(self) -> bool:
        """True while a session is active."""
        alive = self.session.is_active
        self.logger.debug(f"Ping: {alive}")
        return alive

    def set_log_level(self, level: str) -> None:
        get_logger().set_level(level)

    # Reads

    async def read_value(self, node_id: NodeIdLike) -> Any:
        """Read the current value of a node."""
        node_id = to_node_id(node_id)
        value = await self.session.read(node_id, ua.AttributeIds.Value)
        self.logger.info(f"Read data: {node_id.to_string()}")
        return value

    async def read_data_type(self, node_id: NodeIdLike) -> Optional[ua.NodeId]:
        """Read the declared data type of a node."""
        node_id = to_node_id(node_id)
        data_type_id = await self.session.read(node_id, ua.AttributeIds.DataType)
        self.logger.info(f"Read type: {node_id.to_string()}")
        return data_type_id

    # Discovery

    async def browse(self, root: NodeIdLike, monitor: bool = False) -> List[DiscoveredItem]:
        """
        Discover the address space below root.

        Args:
            root: Node to browse from
            monitor: Register newly discovered nodes for monitoring

        Returns:
            Newly discovered items

        Raises:
            BusyError: Another browse is running
            Exception: Session failures during the walk
        """
        root = to_node_id(root)
        self._emit(EventKind.BEFORE_BROWSING, node_id=root)
        try:
            new_items = await self.browse_engine.browse(root, monitor)
        except Exception as e:
            self._report_error(e)
            raise
        self._emit(EventKind.AFTER_BROWSING, node_id=root, value=len(new_items))
        return new_items

    @property
    def items_available(self) -> List[DiscoveredItem]:
        return self.cache.items

    def find_available_item(self, node_id: NodeIdLike) -> Optional[DiscoveredItem]:
        return self.cache.find(node_id)

    def search_items(self, name: str) -> List[DiscoveredItem]:
        """Cached items whose browse name contains name (case-insensitive)."""
        return self.cache.search_by_name_contains(name)

    def load_cached_items(self) -> Optional[List[DiscoveredItem]]:
        """
        Reload the cache from its file.

        Returns:
            Loaded items, or None when the file is missing, malformed or a
            browse is running (reported as an ERROR event)
        """
        try:
            return self.cache.load_from_file()
        except SupervisorError as e:
            self._report_error(e)
            return None

    # Monitoring

    @property
    def monitored_items(self) -> List[MonitoredItemSpec]:
        return self.monitor_manager.items

    def find_monitored_item(self, node_id: NodeIdLike) -> Optional[MonitoredItemSpec]:
        return self.monitor_manager.find(node_id)

    async def add_item_to_monitor(self, node_id: NodeIdLike) -> bool:
        """
        Read a node and register it for monitoring.

        Returns:
            True if the node was registered
        """
        self._emit(EventKind.BEFORE_MONITOR_ITEM, node_id=node_id)
        try:
            node_id = to_node_id(node_id)
            if self.monitor_manager.find(node_id) is not None:
                raise DuplicateRegistrationError(
                    f"Item already monitored: {node_id.to_string()}", node_id=node_id
                )

            cached = self.cache.find(node_id)
            browse_name = cached.browse_name if cached is not None else ""
            item = await self.browse_engine.read_node(node_id, browse_name)
            self.monitor_manager.add(MonitoredItemSpec.from_discovered(item))
        except Exception as e:
            self._report_error(e, node_id=node_id)
            return False

        self._emit(EventKind.AFTER_MONITOR_ITEM, node_id=node_id)
        return True

    async def start_monitoring(self) -> bool:
        """
        Open the subscription over every registered item.

        Returns:
            True if the subscription was created
        """
        self._emit(EventKind.BEFORE_MONITORING, value=len(self.monitor_manager))
        try:
            await self.monitor_manager.start()
        except Exception as e:
            self._report_error(e)
            return False

        self._emit(EventKind.AFTER_MONITORING, value=len(self.monitor_manager))
        return True

    async def stop_monitoring(self) -> bool:
        """Terminate the subscription; registrations are kept."""
        try:
            terminated = await self.monitor_manager.close()
        except Exception as e:
            self._report_error(e)
            return False

        if terminated:
            self._emit(EventKind.SESSION_TERMINATED)
        return terminated

    # Writes

    async def write(self, node_id: NodeIdLike, value: Any) -> Optional[ua.StatusCode]:
        """
        Write a value to a monitored node using its discovered wire type.

        Args:
            node_id: Monitored node
            value: Proposed value (string input is parsed for numbers, a
                mapping of fields for structures)

        Returns:
            Status code of the write, None when nothing was written
        """
        try:
            node_id = to_node_id(node_id)
            spec = self.monitor_manager.find(node_id)
            if spec is None:
                raise NodeNotFoundError(
                    f"Item not monitored: {node_id.to_string()}", node_id=node_id
                )
        except (SupervisorError, ValueError) as e:
            self._report_error(e, node_id=node_id)
            return None

        self.logger.info(f"Write data: {node_id.to_string()} : {value!r}")
        self._emit(EventKind.BEFORE_WRITE, node_id=node_id, value=value)
        try:
            wire_value = await self.coercer.coerce(
                spec.category,
                value,
                type_code=spec.type_code,
                last_value=self.monitor_manager.last_value(node_id),
                data_type_id=spec.data_type_id,
            )
            status = await self.session.write(node_id, spec.attribute_id, wire_value)
        except Exception as e:
            self._report_error(e, node_id=node_id)
            return None

        self.logger.info(f"Wrote {wire_value.variant_type.name} {wire_value.value!r} to {node_id.to_string()}")
        self._emit(EventKind.AFTER_WRITE, node_id=node_id, value=wire_value.value)
        return status

    async def switch_bool_value(self, node_id: NodeIdLike) -> Optional[ua.StatusCode]:
        """
        Write the negation of a monitored boolean's last known value.

        Returns:
            Status code of the write, None when the node is not a monitored
            boolean
        """
        try:
            spec = self.monitor_manager.find(node_id)
        except ValueError as e:
            self._report_error(e)
            return None

        if spec is None or spec.category != ValueCategory.BOOLEAN:
            self.logger.warn(f"Cannot switch {node_id}: not a monitored boolean")
            return None

        current = self.monitor_manager.last_value(spec.node_id)
        if not isinstance(current, bool):
            return None
        return await self.write(spec.node_id, not current)

    # Internal

    def _emit(self, kind: EventKind, **kwargs: Any) -> None:
        node_id = kwargs.get("node_id")
        if isinstance(node_id, str):
            try:
                kwargs["node_id"] = to_node_id(node_id)
            except ValueError:
                kwargs["node_id"] = None
        self.events.emit(ClientEvent(kind=kind, **kwargs))

    def _report_error(self, error: BaseException, node_id: Any = None) -> None:
        self.logger.error(f"{type(error).__name__}: {error}")
        self._emit(EventKind.ERROR, node_id=node_id, message=str(error), error=error)

    def _forward_log(self, level: str, message: str) -> None:
        self.events.emit(ClientEvent(kind=EventKind.LOG, value=level, message=message))

    def _on_session_status(self, status: SessionStatus) -> None:
        if status == SessionStatus.KEEPALIVE_FAILURE:
            self._emit(
                EventKind.ERROR,
                message="Keep-alive failure",
                error=SessionConnectionError("Keep-alive failure", endpoint=self.config.connection.endpoint_url),
            )
        elif status == SessionStatus.SESSION_RESTORED:
            self.logger.info("Session restored")
        else:
            self.logger.debug(f"Session status: {status.value}")

    def _on_item_changed(self, event: ChangeEvent) -> None:
        self.logger.info(f"Item changed [{event.index}] {event.node_id.to_string()}: {event.value!r}")
        self._emit(EventKind.ITEM_CHANGED, node_id=event.node_id, value=event.value)
