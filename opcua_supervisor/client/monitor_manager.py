"""
Monitored item registry and change notification fan-out.

MonitorManager owns the set of nodes registered for monitoring, opens one
subscription covering all of them, and republishes server data changes as
ChangeEvent records to its subscribers.
"""

import asyncio
import inspect
from typing import Any, Awaitable, Callable, List, Optional, Union

from asyncua import ua

from ..errors import DuplicateRegistrationError, NothingToMonitorError, SubscriptionActiveError
from ..logging import SupervisorLogger, get_logger
from ..session import Session, SubscriptionHandle
from ..types.models import (
    ChangeEvent,
    MonitoredItemSpec,
    NodeIdLike,
    SamplingPolicy,
    SubscriptionQoS,
    to_node_id,
)


ChangeCallback = Callable[[ChangeEvent], Union[None, Awaitable[None]]]


class _Subscriber:
    """
    One consumer of change events.

    Events are queued without waiting and drained by a dedicated task, so
    a slow callback only delays its own queue. When the queue is full the
    oldest pending event is dropped.
    """

    def __init__(self, callback: ChangeCallback, maxsize: int, logger: SupervisorLogger):
        self.callback = callback
        self.logger = logger
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.task: Optional[asyncio.Task] = None
        self.dropped = 0

    def offer(self, event: ChangeEvent) -> None:
        if self.queue.full():
            self.queue.get_nowait()
            self.queue.task_done()
            self.dropped += 1
            self.logger.warn(f"Subscriber queue full, dropped oldest event ({self.dropped} total)")
        self.queue.put_nowait(event)

        if self.task is None or self.task.done():
            self.task = asyncio.get_running_loop().create_task(self._drain())

    async def _drain(self) -> None:
        while True:
            event = await self.queue.get()
            try:
                result = self.callback(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                self.logger.error(f"Change subscriber failed for {event.node_id.to_string()}: {e}")
            finally:
                self.queue.task_done()

    async def stop(self) -> None:
        """Cancel the drain task and discard events still queued."""
        task = self.task
        self.task = None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        while not self.queue.empty():
            self.queue.get_nowait()
            self.queue.task_done()


class MonitorManager:
    """
    Manages the monitored item set and its subscription.

    Handles:
    - Registration with one entry per node id
    - One subscription created over the whole set with fixed QoS
    - Non-blocking delivery of change notifications to subscribers
    """

    def __init__(
        self,
        session: Session,
        qos: Optional[SubscriptionQoS] = None,
        sampling: Optional[SamplingPolicy] = None,
        subscriber_queue_size: int = 1000,
        logger: Optional[SupervisorLogger] = None
    ):
        """
        Initialize the monitor manager.

        Args:
            session: Session used to create the subscription
            qos: Subscription parameters
            sampling: Sampling parameters applied to every item
            subscriber_queue_size: Pending events kept per subscriber
            logger: Component logger
        """
        self.session = session
        self.qos = qos or SubscriptionQoS()
        self.sampling = sampling or SamplingPolicy()
        self.subscriber_queue_size = subscriber_queue_size
        self.logger = logger or get_logger("monitor")

        self._items: List[MonitoredItemSpec] = []
        self._index: dict[ua.NodeId, MonitoredItemSpec] = {}
        self._last_values: dict[ua.NodeId, Any] = {}
        self._subscribers: dict[int, _Subscriber] = {}
        self._next_token = 0
        self._subscription: Optional[SubscriptionHandle] = None
        self._starting = False
        self._handles: List[Any] = []

    @property
    def items(self) -> List[MonitoredItemSpec]:
        """Registered items in registration order."""
        return list(self._items)

    @property
    def handles(self) -> List[Any]:
        """Server handles of the monitored items of the live subscription."""
        return list(self._handles)

    @property
    def is_monitoring(self) -> bool:
        return self._subscription is not None

    def __len__(self) -> int:
        return len(self._items)

    def find(self, node_id: NodeIdLike) -> Optional[MonitoredItemSpec]:
        """Get the registration for a node id, or None."""
        return self._index.get(to_node_id(node_id))

    def add(self, spec: MonitoredItemSpec) -> MonitoredItemSpec:
        """
        Register a node for future monitoring.

        Items added while a subscription is live are picked up by the next
        start().

        Raises:
            DuplicateRegistrationError: The node id is already registered;
                the set is unchanged
        """
        if spec.node_id in self._index:
            raise DuplicateRegistrationError(
                f"Item already monitored: {spec.node_id.to_string()}",
                node_id=spec.node_id,
            )

        self._items.append(spec)
        self._index[spec.node_id] = spec
        self.logger.info(f"Add item to monitor: {spec.node_id.to_string()}")
        return spec

    def last_value(self, node_id: NodeIdLike) -> Any:
        """
        Latest known value of a monitored node.

        Returns the last notified value, the registration snapshot when no
        notification arrived yet, or None for unknown nodes.
        """
        node_id = to_node_id(node_id)
        if node_id in self._last_values:
            return self._last_values[node_id]
        spec = self._index.get(node_id)
        return spec.value if spec is not None else None

    def subscribe(self, callback: ChangeCallback) -> int:
        """
        Register a change event consumer.

        Args:
            callback: Plain function or coroutine function receiving ChangeEvent

        Returns:
            Token to pass to unsubscribe
        """
        token = self._next_token
        self._next_token += 1
        self._subscribers[token] = _Subscriber(callback, self.subscriber_queue_size, self.logger)
        return token

    async def unsubscribe(self, token: int) -> bool:
        subscriber = self._subscribers.pop(token, None)
        if subscriber is None:
            return False
        await subscriber.stop()
        return True

    async def start(self) -> List[Any]:
        """
        Open the subscription and monitor every registered item.

        Returns:
            Server handles of the monitored items

        Raises:
            NothingToMonitorError: No item registered; no subscription created
            SubscriptionActiveError: A subscription is already live or being
                created
        """
        if not self._items:
            self.logger.info("No items to monitor")
            raise NothingToMonitorError("Nothing to monitor")

        if self._subscription is not None or self._starting:
            raise SubscriptionActiveError("Monitoring already started, close it first")

        # claimed before the first await so overlapping calls see it
        self._starting = True
        try:
            specs = list(self._items)
            self.logger.info(f"Create subscription / monitor items ({len(specs)})")

            subscription = await self.session.create_subscription(self.qos, self._on_notification)
            self._subscription = subscription
            try:
                handles = await subscription.monitor_items(specs, self.sampling)
            except Exception:
                self._subscription = None
                try:
                    await subscription.terminate()
                except Exception as e:
                    self.logger.warn(f"Failed to terminate subscription after error: {e}")
                raise
        finally:
            self._starting = False

        self._handles = list(handles)
        self.logger.info("Subscription started")
        return self._handles

    async def close(self) -> bool:
        """
        Terminate the live subscription.

        Returns:
            True if a subscription was terminated
        """
        subscription = self._subscription
        if subscription is None:
            return False

        self._subscription = None
        self._handles = []
        await subscription.terminate()
        self.logger.info("Subscription terminated")
        return True

    async def join(self) -> None:
        """Wait until every queued event has been handed to its subscriber."""
        for subscriber in list(self._subscribers.values()):
            await subscriber.queue.join()

    async def shutdown(self) -> None:
        """Terminate the subscription and stop subscriber tasks."""
        try:
            await self.close()
        finally:
            for subscriber in list(self._subscribers.values()):
                await subscriber.stop()

    def _on_notification(
        self,
        node_id: ua.NodeId,
        value: Any,
        index: int,
        source_timestamp: Any = None
    ) -> None:
        """Transport callback; never awaits."""
        if self._subscription is None:
            return

        self._last_values[node_id] = value
        event = ChangeEvent(
            node_id=node_id,
            value=value,
            index=index,
            source_timestamp=source_timestamp,
        )
        self.logger.debug(f"Item changed [{index}] {node_id.to_string()}: {value!r}")

        for subscriber in list(self._subscribers.values()):
            subscriber.offer(event)
