"""
Client type definitions and converters.

This package provides:
- Data models for discovered and monitored nodes
- Write-time value coercion to OPC UA variant types
"""

from .models import (
    ChangeEvent,
    DiscoveredItem,
    MonitoredItemSpec,
    SamplingPolicy,
    SubscriptionQoS,
    ValueCategory,
    WireValue,
    to_node_id,
)
from .type_coercer import TypeCoercer

__all__ = [
    'ChangeEvent',
    'DiscoveredItem',
    'MonitoredItemSpec',
    'SamplingPolicy',
    'SubscriptionQoS',
    'TypeCoercer',
    'ValueCategory',
    'WireValue',
    'to_node_id',
]
