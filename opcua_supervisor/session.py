"""
Session abstraction over the OPC UA transport.

The client components only talk to the Session protocol defined here.
AsyncuaSession implements it on top of asyncua's Client, using the
low-level connect steps so that connecting to an endpoint and activating a
session are separate operations.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, List, Optional, Protocol
from urllib.parse import urlparse

from asyncua import Client, ua
from asyncua.common.node import Node
from asyncua.ua import uatypes

from .errors import SessionConnectionError, UnsupportedTypeError
from .logging import SupervisorLogger, get_logger
from .types.models import (
    MonitoredItemSpec,
    SamplingPolicy,
    SubscriptionQoS,
    WireValue,
)


class SessionStatus(Enum):
    """Health and lifecycle notifications raised by a session."""
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    KEEPALIVE = "keepalive"
    KEEPALIVE_FAILURE = "keepalive_failure"
    SESSION_CLOSED = "session_closed"
    SESSION_RESTORED = "session_restored"


@dataclass(frozen=True)
class Credentials:
    """User name / password identity used to activate a session."""
    username: Optional[str] = None
    password: Optional[str] = None


@dataclass(frozen=True)
class BrowseReference:
    """One forward hierarchical reference returned by a browse."""
    node_id: ua.NodeId
    browse_name: str
    node_class: Optional[ua.NodeClass] = None


# (node_id, value, index, source_timestamp)
NotificationCallback = Callable[[ua.NodeId, Any, int, Any], None]
StatusListener = Callable[[SessionStatus], None]


class SubscriptionHandle(Protocol):
    """A live server-side subscription."""

    async def monitor_items(
        self,
        specs: List[MonitoredItemSpec],
        sampling: SamplingPolicy
    ) -> List[int]:
        ...

    async def terminate(self) -> None:
        ...


class Session(Protocol):
    """Operations the client needs from the transport."""

    @property
    def is_active(self) -> bool:
        ...

    async def connect(self, endpoint: str) -> None:
        ...

    async def create_session(self, credentials: Optional[Credentials] = None) -> None:
        ...

    async def read(self, node_id: ua.NodeId, attribute_id: int = ua.AttributeIds.Value) -> Any:
        ...

    async def write(
        self,
        node_id: ua.NodeId,
        attribute_id: int,
        wire_value: WireValue
    ) -> ua.StatusCode:
        ...

    async def browse(self, node_id: ua.NodeId) -> List[BrowseReference]:
        ...

    async def create_subscription(
        self,
        qos: SubscriptionQoS,
        on_change: NotificationCallback
    ) -> SubscriptionHandle:
        ...

    async def construct_typed_record(self, data_type_id: Optional[ua.NodeId], fields: dict) -> Any:
        ...

    async def close(self) -> None:
        ...

    async def disconnect(self) -> None:
        ...

    def add_status_listener(self, listener: StatusListener) -> None:
        ...


class _DataChangeHandler:
    """asyncua subscription handler forwarding data changes to a callback."""

    def __init__(self, on_change: NotificationCallback, logger: SupervisorLogger):
        self.on_change = on_change
        self.logger = logger
        self.indexes: dict[ua.NodeId, int] = {}

    def datachange_notification(self, node: Node, val: Any, data: Any) -> None:
        node_id = node.nodeid
        source_timestamp = None
        monitored_item = getattr(data, 'monitored_item', None)
        if monitored_item is not None:
            data_value = getattr(monitored_item, 'Value', None)
            source_timestamp = getattr(data_value, 'SourceTimestamp', None)

        try:
            self.on_change(node_id, val, self.indexes.get(node_id, -1), source_timestamp)
        except Exception as e:
            self.logger.error(f"Data change handler failed for {node_id.to_string()}: {e}")

    def status_change_notification(self, status: Any) -> None:
        self.logger.warn(f"Subscription status changed: {status}")


class AsyncuaSubscription:
    """SubscriptionHandle backed by an asyncua Subscription."""

    def __init__(self, client: Client, subscription: Any, handler: _DataChangeHandler,
                 logger: SupervisorLogger):
        self.client = client
        self.subscription = subscription
        self.handler = handler
        self.logger = logger

    async def monitor_items(
        self,
        specs: List[MonitoredItemSpec],
        sampling: SamplingPolicy
    ) -> List[int]:
        """
        Create monitored items for the whole batch in one request.

        asyncua always requests discard-oldest queues and both timestamps.
        """
        nodes = [self.client.get_node(spec.node_id) for spec in specs]
        for index, spec in enumerate(specs):
            self.handler.indexes[spec.node_id] = index

        handles = await self.subscription.subscribe_data_change(
            nodes,
            attr=ua.AttributeIds.Value,
            queuesize=sampling.queue_size,
            sampling_interval=sampling.sampling_interval_ms,
        )
        if not isinstance(handles, list):
            handles = [handles]

        for spec, handle in zip(specs, handles):
            if isinstance(handle, ua.StatusCode):
                self.logger.error(f"Monitored item rejected for {spec.node_id.to_string()}: {handle}")
        return handles

    async def terminate(self) -> None:
        await self.subscription.delete()


class AsyncuaSession:
    """
    Session implementation on asyncua.

    Connect retries with exponential back-off up to max_retry extra
    attempts. Once a session is active a watchdog task reads the server
    state periodically and reports keep-alive status to listeners.
    """

    def __init__(
        self,
        timeout_s: float = 4.0,
        initial_delay_ms: int = 1000,
        max_retry: int = 1,
        keepalive_interval_s: float = 5.0,
        logger: Optional[SupervisorLogger] = None
    ):
        self.timeout_s = timeout_s
        self.initial_delay_ms = initial_delay_ms
        self.max_retry = max_retry
        self.keepalive_interval_s = keepalive_interval_s
        self.logger = logger or get_logger("session")

        self.client: Optional[Client] = None
        self.endpoint: Optional[str] = None
        self._session_active = False
        self._status_listeners: List[StatusListener] = []
        self._watchdog_task: Optional[asyncio.Task] = None

    @property
    def is_active(self) -> bool:
        return self.client is not None and self._session_active

    def add_status_listener(self, listener: StatusListener) -> None:
        self._status_listeners.append(listener)

    async def connect(self, endpoint: str) -> None:
        """
        Open socket and secure channel to an endpoint.

        Raises:
            SessionConnectionError: If every attempt failed
        """
        if urlparse(endpoint).scheme != "opc.tcp":
            raise SessionConnectionError(f"Invalid endpoint URL: {endpoint}", endpoint=endpoint)

        self.endpoint = endpoint
        self.client = Client(url=endpoint, timeout=self.timeout_s)

        delay = self.initial_delay_ms / 1000.0
        attempt = 0
        while True:
            try:
                await self.client.connect_socket()
                await self.client.send_hello()
                await self.client.open_secure_channel()
                break
            except (OSError, asyncio.TimeoutError, ua.UaError) as e:
                self._drop_socket()
                if attempt >= self.max_retry:
                    self.logger.error(f"Connection to {endpoint} failed: {e}")
                    raise SessionConnectionError(
                        f"Connection to {endpoint} failed: {e}", endpoint=endpoint
                    ) from e
                attempt += 1
                self.logger.warn(f"Connection attempt {attempt} to {endpoint} failed, retrying in {delay:.1f}s")
                await asyncio.sleep(delay)
                delay *= 2

        self.logger.info(f"Connected to {endpoint}")
        self._notify(SessionStatus.CONNECTED)

    async def create_session(self, credentials: Optional[Credentials] = None) -> None:
        """
        Create and activate a session, then load structure definitions.

        Raises:
            SessionConnectionError: Not connected, or activation failed
        """
        if self.client is None:
            raise SessionConnectionError("Not connected")

        credentials = credentials or Credentials()
        try:
            await self.client.create_session()
            await self.client.activate_session(
                username=credentials.username,
                password=credentials.password,
            )
        except (OSError, asyncio.TimeoutError, ua.UaError) as e:
            raise SessionConnectionError(
                f"Session creation failed: {e}", endpoint=self.endpoint
            ) from e

        self._session_active = True
        self.logger.info("Session created")

        try:
            loaded = await self.client.load_data_type_definitions()
            self.logger.info(f"Loaded {len(loaded)} structure definitions")
        except Exception as e:
            self.logger.warn(f"Could not load structure definitions: {e}")

        self._watchdog_task = asyncio.create_task(self._watchdog())

    async def read(self, node_id: ua.NodeId, attribute_id: int = ua.AttributeIds.Value) -> Any:
        """
        Read one attribute.

        Returns:
            Attribute value, or None when the server reports a bad status
            for it (e.g. the Value attribute of an object node)
        """
        node = self._client().get_node(node_id)
        data_value = await node.read_attribute(attribute_id, raise_on_bad_status=False)
        if not data_value.StatusCode.is_good():
            self.logger.debug(f"Read {node_id.to_string()} attr {attribute_id}: {data_value.StatusCode}")
            return None
        if data_value.Value is None:
            return None
        return data_value.Value.Value

    async def write(
        self,
        node_id: ua.NodeId,
        attribute_id: int,
        wire_value: WireValue
    ) -> ua.StatusCode:
        """Write one attribute; bad status codes raise UaStatusCodeError."""
        node = self._client().get_node(node_id)
        await node.write_attribute(attribute_id, wire_value.to_data_value())
        return ua.StatusCode(ua.StatusCodes.Good)

    async def browse(self, node_id: ua.NodeId) -> List[BrowseReference]:
        node = self._client().get_node(node_id)
        descriptions = await node.get_children_descriptions()
        return [
            BrowseReference(
                node_id=ref.NodeId,
                browse_name=ref.BrowseName.Name,
                node_class=ref.NodeClass,
            )
            for ref in descriptions
        ]

    async def create_subscription(
        self,
        qos: SubscriptionQoS,
        on_change: NotificationCallback
    ) -> AsyncuaSubscription:
        client = self._client()
        params = ua.CreateSubscriptionParameters()
        params.RequestedPublishingInterval = qos.publishing_interval_ms
        params.RequestedLifetimeCount = qos.lifetime_count
        params.RequestedMaxKeepAliveCount = qos.max_keepalive_count
        params.MaxNotificationsPerPublish = qos.max_notifications_per_publish
        params.PublishingEnabled = qos.publishing_enabled
        params.Priority = qos.priority

        handler = _DataChangeHandler(on_change, self.logger)
        subscription = await client.create_subscription(params, handler)
        return AsyncuaSubscription(client, subscription, handler, self.logger)

    async def construct_typed_record(self, data_type_id: Optional[ua.NodeId], fields: dict) -> Any:
        """
        Build an instance of a server-defined structure.

        Raises:
            UnsupportedTypeError: The structure type was not loaded
        """
        record_cls = uatypes.extension_objects_by_datatype.get(data_type_id)
        if record_cls is None:
            raise UnsupportedTypeError(f"Unknown structure type: {data_type_id}")
        return record_cls(**fields)

    async def close(self) -> None:
        """Close the session, keeping the secure channel open."""
        await self._stop_watchdog()
        if self.client is None or not self._session_active:
            return

        self._session_active = False
        try:
            await self.client.close_session()
        finally:
            self._notify(SessionStatus.SESSION_CLOSED)

    async def disconnect(self) -> None:
        """Close session, secure channel and socket."""
        await self._stop_watchdog()
        if self.client is None:
            return

        try:
            if self._session_active:
                self._session_active = False
                await self.client.close_session()
            await self.client.close_secure_channel()
        except (OSError, asyncio.TimeoutError, ua.UaError) as e:
            self.logger.warn(f"Error while disconnecting: {e}")
        finally:
            self._drop_socket()
            self.client = None
            self._notify(SessionStatus.DISCONNECTED)

    def _client(self) -> Client:
        if self.client is None or not self._session_active:
            raise SessionConnectionError("No active session", endpoint=self.endpoint)
        return self.client

    def _drop_socket(self) -> None:
        if self.client is None:
            return
        try:
            self.client.disconnect_socket()
        except Exception as e:
            self.logger.debug(f"Socket close failed: {e}")

    def _notify(self, status: SessionStatus) -> None:
        for listener in list(self._status_listeners):
            try:
                listener(status)
            except Exception as e:
                self.logger.error(f"Session status listener failed: {e}")

    async def _watchdog(self) -> None:
        """Periodically read the server state while the session is active."""
        failing = False
        while self._session_active and self.client is not None:
            await asyncio.sleep(self.keepalive_interval_s)
            try:
                await self.client.nodes.server_state.read_value()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if not failing:
                    self.logger.error(f"Keep-alive failure: {e}")
                failing = True
                self._notify(SessionStatus.KEEPALIVE_FAILURE)
                continue

            if failing:
                failing = False
                self.logger.info("Session restored")
                self._notify(SessionStatus.SESSION_RESTORED)
            else:
                self._notify(SessionStatus.KEEPALIVE)

    async def _stop_watchdog(self) -> None:
        task = self._watchdog_task
        self._watchdog_task = None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
