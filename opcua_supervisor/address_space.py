"""
Local mirror of the discovered address space.

AddressSpaceCache keeps discovered items in discovery order with a node id
index alongside, and persists the collection to a JSON file once a full
browse has completed.
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Iterator, List, Optional, Union

from asyncua import ua

from .errors import BusyError, CacheNotFoundError, CacheParseError
from .logging import SupervisorLogger, get_logger
from .types.models import DiscoveredItem, NodeIdLike, to_node_id


class AddressSpaceCache:
    """
    Ordered, node id indexed collection of discovered items.

    Re-upserting a known node id replaces the item at its original position,
    so positions of unchanged items survive repeated browses. The cache file
    is not authoritative: it is only rewritten after a complete browse and
    any file left over from a previous run is removed at construction.
    """

    def __init__(
        self,
        directory: Union[str, Path] = "./cache",
        filename: str = "items.json",
        logger: Optional[SupervisorLogger] = None
    ):
        """
        Initialize the cache.

        Args:
            directory: Directory holding the cache file, created if missing
            filename: Cache file name
            logger: Component logger
        """
        self.logger = logger or get_logger("cache")
        self.directory = Path(directory)
        self.filename = filename

        self._items: List[DiscoveredItem] = []
        self._index: dict[ua.NodeId, int] = {}
        self._browse_in_progress = False

        self.directory.mkdir(parents=True, exist_ok=True)
        self._delete_cache_file()

    @property
    def path(self) -> Path:
        """Full path of the cache file."""
        return self.directory / self.filename

    @property
    def items(self) -> List[DiscoveredItem]:
        """Snapshot of the cached items in discovery order."""
        return list(self._items)

    @property
    def browse_in_progress(self) -> bool:
        return self._browse_in_progress

    def begin_browse(self) -> None:
        """
        Mark a browse as running.

        Raises:
            BusyError: If another browse is already running
        """
        if self._browse_in_progress:
            raise BusyError("A browse is already in progress")
        self._browse_in_progress = True

    def end_browse(self) -> None:
        """Clear the browse-in-progress flag."""
        self._browse_in_progress = False

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[DiscoveredItem]:
        return iter(list(self._items))

    def __contains__(self, node_id: object) -> bool:
        try:
            return to_node_id(node_id) in self._index  # type: ignore[arg-type]
        except ValueError:
            return False

    def upsert(self, item: DiscoveredItem) -> bool:
        """
        Insert or replace an item keyed by its node id.

        Returns:
            True if the item was appended, False if it replaced an existing one
        """
        index = self._index.get(item.node_id)
        if index is not None:
            self._items[index] = item
            return False

        self._index[item.node_id] = len(self._items)
        self._items.append(item)
        return True

    def find(self, node_id: NodeIdLike) -> Optional[DiscoveredItem]:
        """Get the cached item for a node id, or None."""
        index = self.find_index(node_id)
        if index < 0:
            return None
        return self._items[index]

    def find_index(self, node_id: NodeIdLike) -> int:
        """Get the position of a node id in discovery order, or -1."""
        return self._index.get(to_node_id(node_id), -1)

    def search_by_name_contains(self, substring: str) -> List[DiscoveredItem]:
        """Items whose browse name contains substring, case-insensitively."""
        needle = substring.lower()
        return [item for item in self._items if needle in item.browse_name.lower()]

    def clear(self) -> None:
        """Drop every cached item."""
        self._items = []
        self._index = {}

    def save_to_file(self) -> Path:
        """
        Write the whole collection to the cache file.

        The file is written to a temporary sibling and moved into place, so
        readers never observe a partially written cache.

        Returns:
            Path of the written file
        """
        path = self.path
        payload = json.dumps(
            [item.to_dict() for item in self._items],
            indent=2,
            ensure_ascii=False,
        )

        fd, tmp_name = tempfile.mkstemp(
            dir=str(self.directory), prefix=f".{self.filename}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                f.write(payload)
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

        self.logger.info(f"Cache file written: {path} ({len(self._items)} items)")
        return path

    def load_from_file(self) -> List[DiscoveredItem]:
        """
        Replace the in-memory collection with the cache file content.

        Returns:
            Loaded items

        Raises:
            BusyError: A browse is in progress
            CacheNotFoundError: The cache file does not exist
            CacheParseError: The cache file content is malformed; the cache
                is left empty
        """
        if self._browse_in_progress:
            raise BusyError("Cannot load cache file while a browse is in progress")

        path = self.path
        if not path.exists():
            self.logger.error(f"Cache file does not exist: {path}")
            raise CacheNotFoundError(f"Cache file not found: {path}", path=str(path))

        try:
            with open(path, 'r', encoding='utf-8') as f:
                raw = json.load(f)
            if not isinstance(raw, list):
                raise ValueError("cache file must hold a JSON array")
            items = [DiscoveredItem.from_dict(entry) for entry in raw]
        except (ValueError, TypeError, AttributeError, UnicodeDecodeError) as e:
            # json.JSONDecodeError is a ValueError
            self.clear()
            self.logger.error(f"Invalid cache file {path}: {e}")
            raise CacheParseError(f"Invalid cache file {path}: {e}", path=str(path))

        self.clear()
        for item in items:
            self.upsert(item)

        self.logger.info(f"Cache file loaded: {path} ({len(self._items)} items)")
        return self.items

    def _delete_cache_file(self) -> None:
        """Remove a cache file left over from a previous run."""
        path = self.path
        if not path.exists():
            return

        try:
            path.unlink()
            self.logger.info(f"Deleted previous cache file: {path}")
        except OSError as e:
            self.logger.error(f"Failed to delete cache file {path}: {e}")
