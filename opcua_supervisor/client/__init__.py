"""
OPC UA client core components.

This package provides:
- Client lifecycle management (facade)
- Address space discovery
- Monitored item subscription management
"""

from .browse_engine import BrowseEngine
from .client_manager import OpcuaClientManager
from .monitor_manager import MonitorManager

__all__ = [
    'BrowseEngine',
    'MonitorManager',
    'OpcuaClientManager',
]
