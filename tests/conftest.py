"""Shared fixtures: an in-memory Session standing in for a PLC."""

import asyncio
from dataclasses import dataclass
from typing import Any, Optional

import pytest
from asyncua import ua

from opcua_supervisor.config import CacheConfig, ClientConfig, ConnectionConfig
from opcua_supervisor.errors import SessionConnectionError, UnsupportedTypeError
from opcua_supervisor.session import BrowseReference


BOOLEAN_TYPE = ua.NodeId(1, 0)
INT16_TYPE = ua.NodeId(4, 0)
INT32_TYPE = ua.NodeId(6, 0)
FLOAT_TYPE = ua.NodeId(10, 0)
STRING_TYPE = ua.NodeId(12, 0)
RECORD_TYPE = ua.NodeId(3001, 2)


def nid(name: str) -> ua.NodeId:
    """String node id in namespace 2."""
    return ua.NodeId(name, 2)


ROOT = nid("R")
NODE_A = nid("A")
NODE_B = nid("B")


@dataclass
class FakeRecord:
    """Stand-in for a structure class generated from the server's definitions."""
    data_type_id: Any
    fields: dict


class FakeSubscription:
    def __init__(self, qos, on_change):
        self.qos = qos
        self.on_change = on_change
        self.batches = []
        self.terminated = False

    async def monitor_items(self, specs, sampling):
        self.batches.append((list(specs), sampling))
        return list(range(1, len(specs) + 1))

    async def terminate(self):
        self.terminated = True

    def notify(self, node_id, value, index=0, source_timestamp=None):
        self.on_change(node_id, value, index, source_timestamp)


class FakeSession:
    """
    In-memory Session.

    tree maps a node id to its ordered (child node id, browse name) pairs,
    values and data_types hold the Value and DataType attributes.
    """

    def __init__(self, tree=None, values=None, data_types=None):
        self.tree = tree or {}
        self.values = values or {}
        self.data_types = data_types or {}
        self.writes = []
        self.subscriptions = []
        self.browse_calls = []
        self.fail_browse = set()
        self.fail_connect = False
        self.gate: Optional[asyncio.Event] = None
        self.endpoint = None
        self.credentials = None
        self.closed = False
        self.disconnected = False
        self.listeners = []
        self._active = False

    @property
    def is_active(self):
        return self._active

    def add_status_listener(self, listener):
        self.listeners.append(listener)

    async def connect(self, endpoint):
        if self.fail_connect:
            raise SessionConnectionError(f"Connection to {endpoint} failed", endpoint=endpoint)
        self.endpoint = endpoint

    async def create_session(self, credentials=None):
        self.credentials = credentials
        self._active = True

    async def read(self, node_id, attribute_id=ua.AttributeIds.Value):
        if attribute_id == ua.AttributeIds.DataType:
            return self.data_types.get(node_id)
        return self.values.get(node_id)

    async def write(self, node_id, attribute_id, wire_value):
        self.writes.append((node_id, attribute_id, wire_value))
        return ua.StatusCode(ua.StatusCodes.Good)

    async def browse(self, node_id):
        self.browse_calls.append(node_id)
        if self.gate is not None:
            await self.gate.wait()
        if node_id in self.fail_browse:
            raise RuntimeError(f"browse of {node_id.to_string()} failed")
        return [BrowseReference(child, name) for child, name in self.tree.get(node_id, [])]

    async def create_subscription(self, qos, on_change):
        subscription = FakeSubscription(qos, on_change)
        self.subscriptions.append(subscription)
        return subscription

    async def construct_typed_record(self, data_type_id, fields):
        if data_type_id is None:
            raise UnsupportedTypeError("no structure type")
        return FakeRecord(data_type_id, dict(fields))

    async def close(self):
        self._active = False
        self.closed = True

    async def disconnect(self):
        self._active = False
        self.disconnected = True


@pytest.fixture
def plc_session():
    """Root R with children A (Boolean false) and B (Int32 42)."""
    return FakeSession(
        tree={ROOT: [(NODE_A, "xLamp"), (NODE_B, "iCounter")]},
        values={NODE_A: False, NODE_B: 42},
        data_types={NODE_A: BOOLEAN_TYPE, NODE_B: INT32_TYPE},
    )


@pytest.fixture
def cache_dir(tmp_path):
    return tmp_path / "cache"


@pytest.fixture
def client_config(cache_dir):
    return ClientConfig(
        connection=ConnectionConfig(
            endpoint_url="opc.tcp://127.0.0.1:4840",
            username="admin",
            password="wago",
        ),
        cache=CacheConfig(directory=str(cache_dir), filename="items.json"),
    )
