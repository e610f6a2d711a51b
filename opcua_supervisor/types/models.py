"""
Data models for the OPC UA supervisory client.

This module defines the records exchanged between the browse engine,
the address space cache, the monitor manager and the client facade.
"""

from dataclasses import dataclass, field, fields, is_dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Optional, Union

from asyncua import ua
from asyncua.ua.object_ids import ObjectIdNames


NodeIdLike = Union[ua.NodeId, str]


def to_node_id(value: NodeIdLike) -> ua.NodeId:
    """
    Normalize a node identifier.

    Args:
        value: NodeId instance or its string form (e.g. "ns=2;s=Motor")

    Returns:
        NodeId instance

    Raises:
        ValueError: If the string form cannot be parsed
    """
    if isinstance(value, ua.NodeId):
        return value
    if isinstance(value, str):
        try:
            return ua.NodeId.from_string(value)
        except Exception as e:
            raise ValueError(f"Invalid node id: {value!r} ({e})")
    raise ValueError(f"Invalid node id: {value!r}")


def node_id_to_string(node_id: Optional[ua.NodeId]) -> Optional[str]:
    """String form of a node id, None stays None."""
    if node_id is None:
        return None
    return node_id.to_string()


def type_code_of(data_type_id: Optional[ua.NodeId]) -> Optional[int]:
    """Numeric code of a built-in data type (namespace 0 numeric identifier)."""
    if data_type_id is None:
        return None
    if data_type_id.NamespaceIndex != 0 or not isinstance(data_type_id.Identifier, int):
        return None
    return data_type_id.Identifier


def data_type_name(data_type_id: Optional[ua.NodeId]) -> str:
    """Readable name for a data type node id."""
    code = type_code_of(data_type_id)
    if code is not None and code in ObjectIdNames:
        return ObjectIdNames[code]
    return node_id_to_string(data_type_id) or ""


def to_jsonable(value: Any) -> Any:
    """Convert a sampled value into plain JSON types."""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, ua.NodeId):
        return value.to_string()
    if isinstance(value, Enum):
        return to_jsonable(value.value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (bytes, bytearray)):
        return value.hex()
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: to_jsonable(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, Mapping):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    return str(value)


class ValueCategory(Enum):
    """Runtime category of a sampled value, fixed at discovery time."""
    BOOLEAN = "boolean"
    RECORD = "record"
    NUMERIC = "numeric"
    OTHER = "other"

    @classmethod
    def of(cls, value: Any) -> 'ValueCategory':
        """Classify a sampled value."""
        # bool is an int subclass, check it first
        if isinstance(value, bool):
            return cls.BOOLEAN
        if isinstance(value, (int, float)):
            return cls.NUMERIC
        if is_dataclass(value) and not isinstance(value, type):
            return cls.RECORD
        if isinstance(value, Mapping):
            return cls.RECORD
        return cls.OTHER


@dataclass
class DiscoveredItem:
    """
    A node found while browsing the address space.

    One instance per reachable node; owned by AddressSpaceCache.
    """
    node_id: ua.NodeId
    browse_name: str
    data_type_id: Optional[ua.NodeId] = None
    data_type: str = ""
    value: Any = None
    category: ValueCategory = ValueCategory.OTHER

    @property
    def type_code(self) -> Optional[int]:
        """Built-in data type code, None for custom types."""
        return type_code_of(self.data_type_id)

    def to_dict(self) -> dict:
        """Serialize to the cache file representation."""
        return {
            "node_id": node_id_to_string(self.node_id),
            "browse_name": self.browse_name,
            "data_type_id": node_id_to_string(self.data_type_id),
            "data_type": self.data_type,
            "value": to_jsonable(self.value),
            "category": self.category.value,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'DiscoveredItem':
        """
        Create from the cache file representation.

        Raises:
            ValueError: If a required field is missing or malformed
        """
        try:
            node_id = to_node_id(data["node_id"])
            browse_name = data["browse_name"]
        except (KeyError, TypeError) as e:
            raise ValueError(f"Missing required field in cached item: {e}")
        if not isinstance(browse_name, str):
            raise ValueError(f"browse_name must be a string, got {browse_name!r}")

        data_type_id = data.get("data_type_id")
        value = data.get("value")
        category = data.get("category")
        return cls(
            node_id=node_id,
            browse_name=browse_name,
            data_type_id=to_node_id(data_type_id) if data_type_id else None,
            data_type=data.get("data_type", ""),
            value=value,
            category=ValueCategory(category) if category else ValueCategory.of(value),
        )


@dataclass
class MonitoredItemSpec:
    """
    A node registered for server-side change detection.

    value is the snapshot taken at registration time; fresher values only
    arrive through change notifications.
    """
    node_id: ua.NodeId
    data_type_id: Optional[ua.NodeId] = None
    data_type: str = ""
    value: Any = None
    category: ValueCategory = ValueCategory.OTHER
    attribute_id: int = ua.AttributeIds.Value
    index_range: Optional[str] = None
    data_encoding: Optional[str] = None
    browse_name: str = ""

    @property
    def type_code(self) -> Optional[int]:
        """Built-in data type code, None for custom types."""
        return type_code_of(self.data_type_id)

    @classmethod
    def from_discovered(cls, item: DiscoveredItem) -> 'MonitoredItemSpec':
        """Create a registration from a discovered item."""
        return cls(
            node_id=item.node_id,
            data_type_id=item.data_type_id,
            data_type=item.data_type,
            value=item.value,
            category=item.category,
            browse_name=item.browse_name,
        )


@dataclass(frozen=True)
class ChangeEvent:
    """A value change pushed by the server for one monitored item."""
    node_id: ua.NodeId
    value: Any
    index: int
    source_timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class WireValue:
    """A value paired with the exact variant type the controller expects."""
    variant_type: ua.VariantType
    value: Any

    def to_variant(self) -> ua.Variant:
        """Build the asyncua Variant."""
        return ua.Variant(self.value, self.variant_type)

    def to_data_value(self) -> ua.DataValue:
        """Build the asyncua DataValue used by write requests."""
        return ua.DataValue(self.to_variant())


@dataclass
class SubscriptionQoS:
    """Requested subscription parameters."""
    publishing_interval_ms: float = 1000
    lifetime_count: int = 100
    max_keepalive_count: int = 30
    max_notifications_per_publish: int = 10
    publishing_enabled: bool = True
    priority: int = 10


@dataclass
class SamplingPolicy:
    """Sampling parameters applied uniformly to every monitored item."""
    sampling_interval_ms: float = 100
    queue_size: int = 10
    discard_oldest: bool = True
    timestamps: ua.TimestampsToReturn = field(default=ua.TimestampsToReturn.Both)
