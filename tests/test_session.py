"""Tests for the asyncua-backed session, with the asyncua client mocked."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from asyncua import ua

from opcua_supervisor.errors import SessionConnectionError, UnsupportedTypeError
from opcua_supervisor.logging import get_logger
from opcua_supervisor.session import (
    AsyncuaSession,
    Credentials,
    SessionStatus,
    _DataChangeHandler,
)
from opcua_supervisor.types import SubscriptionQoS, WireValue

from conftest import nid


def _active_session(client):
    session = AsyncuaSession()
    session.client = client
    session._session_active = True
    return session


class TestConnect:
    """Tests for connect/create_session."""

    @pytest.mark.asyncio
    async def test_rejects_non_opc_tcp_endpoint(self):
        with pytest.raises(SessionConnectionError) as exc_info:
            await AsyncuaSession().connect("http://plc:4840")
        assert exc_info.value.endpoint == "http://plc:4840"

    @pytest.mark.asyncio
    async def test_retries_then_fails(self):
        client = MagicMock()
        client.connect_socket = AsyncMock(side_effect=OSError("refused"))

        with patch("opcua_supervisor.session.Client", return_value=client):
            session = AsyncuaSession(initial_delay_ms=0, max_retry=2)
            with pytest.raises(SessionConnectionError):
                await session.connect("opc.tcp://plc:4840")

        assert client.connect_socket.await_count == 3
        assert not session.is_active

    @pytest.mark.asyncio
    async def test_connect_and_activate(self):
        client = MagicMock()
        for name in ("connect_socket", "send_hello", "open_secure_channel",
                     "create_session", "activate_session", "close_session",
                     "close_secure_channel"):
            setattr(client, name, AsyncMock())
        client.load_data_type_definitions = AsyncMock(return_value={})
        statuses = []

        with patch("opcua_supervisor.session.Client", return_value=client):
            session = AsyncuaSession(keepalive_interval_s=60)
            session.add_status_listener(statuses.append)
            await session.connect("opc.tcp://plc:4840")
            await session.create_session(Credentials("admin", "wago"))

        assert session.is_active
        client.activate_session.assert_awaited_once_with(username="admin", password="wago")

        await session.disconnect()
        assert not session.is_active
        assert statuses == [SessionStatus.CONNECTED, SessionStatus.DISCONNECTED]

    @pytest.mark.asyncio
    async def test_create_session_before_connect(self):
        with pytest.raises(SessionConnectionError):
            await AsyncuaSession().create_session()


class TestAttributes:
    """Tests for read/write/browse through asyncua nodes."""

    @pytest.mark.asyncio
    async def test_read_bad_status_is_none(self):
        data_value = MagicMock()
        data_value.StatusCode.is_good.return_value = False
        node = MagicMock()
        node.read_attribute = AsyncMock(return_value=data_value)
        client = MagicMock()
        client.get_node.return_value = node

        assert await _active_session(client).read(nid("Folder")) is None
        node.read_attribute.assert_awaited_once_with(ua.AttributeIds.Value, raise_on_bad_status=False)

    @pytest.mark.asyncio
    async def test_read_value(self):
        data_value = MagicMock()
        data_value.StatusCode.is_good.return_value = True
        data_value.Value.Value = 42
        node = MagicMock()
        node.read_attribute = AsyncMock(return_value=data_value)
        client = MagicMock()
        client.get_node.return_value = node

        assert await _active_session(client).read(nid("B")) == 42

    @pytest.mark.asyncio
    async def test_read_without_session(self):
        with pytest.raises(SessionConnectionError):
            await AsyncuaSession().read(nid("B"))

    @pytest.mark.asyncio
    async def test_write_sends_typed_variant(self):
        node = MagicMock()
        node.write_attribute = AsyncMock()
        client = MagicMock()
        client.get_node.return_value = node

        status = await _active_session(client).write(
            nid("B"), ua.AttributeIds.Value, WireValue(ua.VariantType.Int16, 5)
        )

        assert status.is_good()
        attribute_id, data_value = node.write_attribute.await_args.args
        assert attribute_id == ua.AttributeIds.Value
        assert data_value.Value.VariantType == ua.VariantType.Int16
        assert data_value.Value.Value == 5

    @pytest.mark.asyncio
    async def test_browse_maps_descriptions(self):
        description = MagicMock()
        description.NodeId = nid("A")
        description.BrowseName = ua.QualifiedName("xLamp", 2)
        description.NodeClass = ua.NodeClass.Variable
        node = MagicMock()
        node.get_children_descriptions = AsyncMock(return_value=[description])
        client = MagicMock()
        client.get_node.return_value = node

        references = await _active_session(client).browse(nid("R"))

        assert [(r.node_id, r.browse_name) for r in references] == [(nid("A"), "xLamp")]

    @pytest.mark.asyncio
    async def test_unknown_structure_type(self):
        with pytest.raises(UnsupportedTypeError):
            await AsyncuaSession().construct_typed_record(ua.NodeId(999999, 7), {})


class TestSubscription:
    """Tests for subscription creation and notification forwarding."""

    @pytest.mark.asyncio
    async def test_parameters(self):
        client = MagicMock()
        client.create_subscription = AsyncMock(return_value=MagicMock())

        await _active_session(client).create_subscription(SubscriptionQoS(), lambda *args: None)

        params = client.create_subscription.await_args.args[0]
        assert params.RequestedPublishingInterval == 1000
        assert params.RequestedLifetimeCount == 100
        assert params.RequestedMaxKeepAliveCount == 30
        assert params.MaxNotificationsPerPublish == 10
        assert params.PublishingEnabled is True
        assert params.Priority == 10

    def test_handler_forwards_index(self):
        received = []
        handler = _DataChangeHandler(lambda *args: received.append(args), get_logger("test"))
        handler.indexes[nid("B")] = 1
        node = MagicMock()
        node.nodeid = nid("B")

        handler.datachange_notification(node, 7, MagicMock(monitored_item=None))

        assert received == [(nid("B"), 7, 1, None)]
