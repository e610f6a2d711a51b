"""
Address space discovery.

BrowseEngine walks the server's address space from a root node, reads value
and data type of every node it reaches, and keeps AddressSpaceCache up to
date. Requests are issued one at a time, node by node.
"""

from typing import Dict, Iterable, List, Optional, Set, Tuple

from asyncua import ua

from ..address_space import AddressSpaceCache
from ..errors import DuplicateRegistrationError
from ..logging import SupervisorLogger, get_logger
from ..session import BrowseReference, Session
from ..types.models import (
    DiscoveredItem,
    MonitoredItemSpec,
    NodeIdLike,
    ValueCategory,
    data_type_name,
    to_node_id,
)
from .monitor_manager import MonitorManager


class BrowseEngine:
    """
    Depth-first address space walker.

    Uses an explicit stack and a visited set keyed by node id, so every
    reachable node is read exactly once per browse whatever the reference
    topology (shared children, cycles, deep trees).
    """

    def __init__(
        self,
        session: Session,
        cache: AddressSpaceCache,
        monitor_manager: Optional[MonitorManager] = None,
        logger: Optional[SupervisorLogger] = None
    ):
        """
        Initialize the browse engine.

        Args:
            session: Session used for browse and read requests
            cache: Cache receiving discovered items
            monitor_manager: Receives newly discovered items when browsing
                with monitor=True
            logger: Component logger
        """
        self.session = session
        self.cache = cache
        self.monitor_manager = monitor_manager
        self.logger = logger or get_logger("browse")

    @property
    def in_progress(self) -> bool:
        return self.cache.browse_in_progress

    async def read_node(self, node_id: NodeIdLike, browse_name: str = "") -> DiscoveredItem:
        """
        Read declared data type and current value of one node.

        Args:
            node_id: Node to read
            browse_name: Browse name reported by the parent reference

        Returns:
            DiscoveredItem with its value category resolved
        """
        node_id = to_node_id(node_id)
        data_type_id = await self.session.read(node_id, ua.AttributeIds.DataType)
        if not isinstance(data_type_id, ua.NodeId):
            data_type_id = None
        value = await self.session.read(node_id, ua.AttributeIds.Value)

        return DiscoveredItem(
            node_id=node_id,
            browse_name=browse_name,
            data_type_id=data_type_id,
            data_type=data_type_name(data_type_id),
            value=value,
            category=ValueCategory.of(value),
        )

    async def browse(self, root: NodeIdLike, monitor: bool = False) -> List[DiscoveredItem]:
        """
        Discover every node below root.

        The root itself is not cached. Known node ids are updated in place,
        others are appended. The cache file is written once the whole walk
        has completed.

        Args:
            root: Node to start from
            monitor: Register newly discovered nodes for monitoring

        Returns:
            Items that were not cached before this browse

        Raises:
            BusyError: Another browse is running; the cache is untouched
            Exception: Any browse/read failure from the session propagates
        """
        root = to_node_id(root)
        self.cache.begin_browse()
        try:
            self.logger.info(f"Browsing from {root.to_string()}")
            new_items = await self._walk(root, monitor)
            self.logger.info(
                f"Browse of {root.to_string()} done: {len(self.cache)} cached, {len(new_items)} new"
            )
            self.cache.save_to_file()
        finally:
            self.cache.end_browse()
        return new_items

    async def browse_many(
        self,
        roots: Iterable[NodeIdLike],
        monitor: bool = False
    ) -> Dict[ua.NodeId, Exception]:
        """
        Browse several roots one after another.

        A failing root is logged and skipped; the remaining roots are still
        browsed.

        Returns:
            Mapping of failed root to its error, empty when all succeeded
        """
        failures: Dict[ua.NodeId, Exception] = {}
        for root in roots:
            root_id = to_node_id(root)
            try:
                await self.browse(root_id, monitor)
            except Exception as e:
                self.logger.error(f"Browse of {root_id.to_string()} failed: {e}")
                failures[root_id] = e
        return failures

    async def _walk(self, root: ua.NodeId, monitor: bool) -> List[DiscoveredItem]:
        visited: Set[ua.NodeId] = {root}
        stack: List[Tuple[BrowseReference, int]] = []
        new_items: List[DiscoveredItem] = []

        self._push_children(stack, await self.session.browse(root), visited, 0)

        while stack:
            reference, level = stack.pop()
            item = await self.read_node(reference.node_id, reference.browse_name)

            if self.cache.upsert(item):
                new_items.append(item)
                if monitor:
                    self._register(item)

            self.logger.debug(
                f"{' ' * level}|_ {item.node_id.to_string()} / {item.browse_name} ({item.data_type})"
            )

            children = await self.session.browse(reference.node_id)
            self._push_children(stack, children, visited, level + 1)

        return new_items

    @staticmethod
    def _push_children(
        stack: List[Tuple[BrowseReference, int]],
        references: List[BrowseReference],
        visited: Set[ua.NodeId],
        level: int
    ) -> None:
        """Queue unvisited children so the first reference is popped first."""
        pending = []
        for reference in references:
            if reference.node_id in visited:
                continue
            visited.add(reference.node_id)
            pending.append((reference, level))
        stack.extend(reversed(pending))

    def _register(self, item: DiscoveredItem) -> None:
        if self.monitor_manager is None:
            return
        try:
            self.monitor_manager.add(MonitoredItemSpec.from_discovered(item))
        except DuplicateRegistrationError:
            # registered by hand before it was ever browsed
            self.logger.info(f"Item already monitored: {item.node_id.to_string()}")
