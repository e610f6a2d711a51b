"""
OPC UA supervisory client.

This package implements a supervisory client for PLCs exposing an OPC UA
server, built on the asyncua library.

Architecture:
    - client/: Client facade, address space browsing, monitored items
    - address_space.py: Discovered items cache and its JSON file
    - session.py: Session abstraction and its asyncua implementation
    - types/: Data models and write-time type coercion
    - events.py: Typed event channel
    - config.py: Configuration loading and validation
    - logging.py: Centralized logging
    - errors.py: Exception hierarchy

Usage:
    config = ClientConfig.from_dict(get_default_config())
    async with OpcuaClientManager(config) as plc:
        await plc.browse("ns=4;s=|var|PLC.Application.GVL", monitor=True)
        await plc.start_monitoring()
"""

from .address_space import AddressSpaceCache
from .client import BrowseEngine, MonitorManager, OpcuaClientManager
from .config import ClientConfig, get_default_config, load_config
from .events import ClientEvent, EventBus, EventKind
from .session import AsyncuaSession, Credentials, Session
from .types import (
    ChangeEvent,
    DiscoveredItem,
    MonitoredItemSpec,
    TypeCoercer,
    ValueCategory,
    WireValue,
)

__version__ = "1.0.0"
__all__ = [
    'AddressSpaceCache',
    'AsyncuaSession',
    'BrowseEngine',
    'ChangeEvent',
    'ClientConfig',
    'ClientEvent',
    'Credentials',
    'DiscoveredItem',
    'EventBus',
    'EventKind',
    'MonitorManager',
    'MonitoredItemSpec',
    'OpcuaClientManager',
    'Session',
    'TypeCoercer',
    'ValueCategory',
    'WireValue',
    'get_default_config',
    'load_config',
]
