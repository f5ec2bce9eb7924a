from relay.messaging.protocol import build_frame
from relay.messaging.types import MessageAckMessage, ServerEvent
from relay.tests.mocks import MockConnection


class TestBuildFrame:
    def test_model_payload_dumped_by_alias(self):
        frame = build_frame(ServerEvent.MESSAGE_ACK, MessageAckMessage(message_id="m1"))
        assert frame == {"event": "messageAck", "data": {"messageId": "m1"}}

    def test_missing_payload_becomes_empty_map(self):
        assert build_frame(ServerEvent.PONG) == {"event": "pong", "data": {}}


class TestConnectionProtocol:
    async def test_send_ack_adds_callback_id(self):
        conn = MockConnection()
        await conn.send_ack(4, {"success": True})
        assert conn.sent_messages == [{"event": "ack", "data": {"success": True}, "ack": 4}]

    async def test_receive_message_decodes(self):
        conn = MockConnection()
        conn.simulate_receive_nowait({"event": "ping", "data": {}})
        assert await conn.receive_message() == {"event": "ping", "data": {}}
