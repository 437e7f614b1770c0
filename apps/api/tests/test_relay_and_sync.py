"""Outbound relay and pull-based channel sync."""

import json
import uuid
from types import SimpleNamespace

import httpx
import pytest

from conftest import enable_ai
from supportdesk.db.enums import ChannelPlatform, SenderType
from supportdesk.db.models import Ticket, TicketMessage
from supportdesk.jobs.handlers import channels as channel_handlers
from supportdesk.services import channel_connection_service
from supportdesk.services.channels import get_adapter
from supportdesk.services.http_service import ExternalAPIError
from supportdesk.services.relay_service import ChannelRelay, brand_reply
from supportdesk.services.threading_service import ConversationThreader


def _slack_ticket(db, org, connection, ts="1.1"):
    message = get_adapter("slack").normalize(
        {"type": "message", "user": "U_CUST", "channel": "C_SUPPORT", "text": "Help please", "ts": ts}
    )
    routed = ConversationThreader().route(db, connection, org.id, message)
    return db.get(Ticket, routed.ticket_id)


def _relay(handler) -> ChannelRelay:
    return ChannelRelay(client_factory=lambda: httpx.AsyncClient(transport=httpx.MockTransport(handler)))


def _slack_ok(sent):
    def handler(request):
        sent.append(json.loads(request.content))
        return httpx.Response(200, json={"ok": True, "ts": "2.2"})

    return handler


def _agent_messages(db):
    return db.query(TicketMessage).filter(TicketMessage.sender_type == SenderType.AGENT).all()


# =============================================================================
# Relay
# =============================================================================

def test_brand_reply():
    assert brand_reply("Hi", "Acme", None) == "Acme:\nHi"
    assert brand_reply("Hi", "Acme", "Ada") == "Acme (via Ada):\nHi"
    assert brand_reply("Hi", None, "Ada") == "Hi"


@pytest.mark.asyncio
async def test_reply_is_stored_and_delivered(db, test_org, slack_connection):
    ticket = _slack_ticket(db, test_org, slack_connection)
    sent = []

    delivered = await _relay(_slack_ok(sent)).deliver(db, ticket.id, "We are on it")

    assert delivered is True
    assert sent == [{"channel": "C_SUPPORT", "text": "We are on it", "thread_ts": "1.1"}]
    [reply] = _agent_messages(db)
    assert reply.body == "We are on it"
    assert reply.message_metadata["automated"] is True
    assert reply.message_metadata["deliveredMessageId"] == "2.2"


@pytest.mark.asyncio
async def test_failed_delivery_keeps_reply_and_returns_false(db, test_org, slack_connection):
    ticket = _slack_ticket(db, test_org, slack_connection)

    def handler(request):
        return httpx.Response(200, json={"ok": False, "error": "channel_not_found"})

    delivered = await _relay(handler).deliver(db, ticket.id, "Hello?")

    assert delivered is False
    [reply] = _agent_messages(db)
    assert "deliveredAt" not in reply.message_metadata
    db.refresh(slack_connection)
    assert slack_connection.last_error is None


@pytest.mark.asyncio
async def test_revoked_credentials_flag_the_connection(db, test_org, slack_connection):
    ticket = _slack_ticket(db, test_org, slack_connection)

    def handler(request):
        return httpx.Response(200, json={"ok": False, "error": "token_revoked"})

    assert await _relay(handler).deliver(db, ticket.id, "Hello?") is False
    db.refresh(slack_connection)
    assert "token_revoked" in slack_connection.last_error


@pytest.mark.asyncio
async def test_transport_errors_never_escape(db, test_org, slack_connection, monkeypatch):
    ticket = _slack_ticket(db, test_org, slack_connection)

    class Boom(Exception):
        pass

    def handler(request):
        raise Boom("socket closed")

    assert await _relay(handler).deliver(db, ticket.id, "Hello?") is False
    assert len(_agent_messages(db)) == 1


@pytest.mark.asyncio
async def test_internal_note_is_stored_not_sent(db, test_org, slack_connection):
    ticket = _slack_ticket(db, test_org, slack_connection)
    sent = []

    delivered = await _relay(_slack_ok(sent)).deliver(db, ticket.id, "VIP customer", is_internal=True)

    assert delivered is False
    assert sent == []
    [note] = _agent_messages(db)
    assert note.is_internal is True


@pytest.mark.asyncio
async def test_widget_reply_counts_as_delivered(db, test_org):
    connection = channel_connection_service.get_or_create_widget_connection(db, test_org.id)
    message = get_adapter("widget").normalize({"visitor_id": "v", "session_id": "s", "content": "Hi"})
    routed = ConversationThreader().route(db, connection, test_org.id, message)

    def handler(request):
        raise AssertionError("widget replies are never pushed")

    assert await _relay(handler).deliver(db, routed.ticket_id, "Hello from support") is True


@pytest.mark.asyncio
async def test_missing_ticket(db):
    assert await _relay(_slack_ok([])).deliver(db, uuid.uuid4(), "Hi") is False


@pytest.mark.asyncio
async def test_human_reply_is_branded_with_member_name(db, test_org, test_member, slack_connection):
    ticket = _slack_ticket(db, test_org, slack_connection)
    sent = []

    await _relay(_slack_ok(sent)).deliver(db, ticket.id, "Refund issued", sender_user_id=test_member.user_id)

    assert sent[0]["text"] == "Acme Support (via Ada Agent):\nRefund issued"
    # The stored copy is what the agent typed
    assert _agent_messages(db)[0].body == "Refund issued"


@pytest.mark.asyncio
async def test_automated_reply_branding_is_opt_in(db, test_org, slack_connection):
    enable_ai(db, test_org, brand_automated_replies=True)
    ticket = _slack_ticket(db, test_org, slack_connection)
    sent = []

    await _relay(_slack_ok(sent)).deliver(db, ticket.id, "Orders ship in 2 days")

    assert sent[0]["text"] == "Acme Support:\nOrders ship in 2 days"


# =============================================================================
# Channel sync
# =============================================================================

class FakePollingAdapter:
    platform = ChannelPlatform.TELEGRAM

    def __init__(self, results, refreshed=None):
        self.results = list(results)
        self.refreshed = refreshed
        self.seen_credentials = []
        self.seen_cursors = []

    async def fetch_new_since(self, client, credentials, cursor, connection_metadata):
        self.seen_credentials.append(credentials)
        self.seen_cursors.append(cursor)
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    async def refresh_credentials(self, client, credentials):
        return self.refreshed


def _telegram_connection(db, org, cursor=None):
    connection = channel_connection_service.upsert_connection(
        db,
        organization_id=org.id,
        platform=ChannelPlatform.TELEGRAM,
        external_account_id="-500",
        credentials={"bot_token": "old"},
        platform_metadata={"polling_enabled": True},
    )
    if cursor:
        channel_connection_service.record_sync(db, connection, cursor)
    return connection


def _telegram_message(text: str, message_id: int):
    return get_adapter("telegram").normalize(
        {
            "update_id": message_id,
            "message": {
                "message_id": message_id,
                "from": {"id": 3, "first_name": "Kemi"},
                "chat": {"id": -500},
                "text": text,
            },
        }
    )


def _sync_job(connection):
    return SimpleNamespace(id="job-sync", queue="ticket-processing", payload={"connection_id": str(connection.id)})


@pytest.mark.asyncio
async def test_sync_ingests_and_advances_cursor(db, test_org, monkeypatch):
    connection = _telegram_connection(db, test_org, cursor="10")
    adapter = FakePollingAdapter([([_telegram_message("Where is my order", 11)], "12")])
    monkeypatch.setattr(channel_handlers, "get_adapter", lambda platform: adapter)

    await channel_handlers.process_channel_sync(db, _sync_job(connection))

    assert adapter.seen_cursors == ["10"]
    db.refresh(connection)
    assert connection.sync_cursor == "12"
    assert connection.last_synced_at is not None
    assert db.query(Ticket).one().thread_key == "-500"


@pytest.mark.asyncio
async def test_sync_retries_once_after_refreshing_credentials(db, test_org, monkeypatch):
    connection = _telegram_connection(db, test_org)
    adapter = FakePollingAdapter(
        [ExternalAPIError("telegram", 401, "Unauthorized"), ([], "5")],
        refreshed={"bot_token": "new"},
    )
    monkeypatch.setattr(channel_handlers, "get_adapter", lambda platform: adapter)

    await channel_handlers.process_channel_sync(db, _sync_job(connection))

    assert adapter.seen_credentials == [{"bot_token": "old"}, {"bot_token": "new"}]
    db.refresh(connection)
    assert channel_connection_service.load_credentials(connection) == {"bot_token": "new"}
    assert connection.sync_cursor == "5"


@pytest.mark.asyncio
async def test_sync_permanent_failure_flags_connection(db, test_org, monkeypatch):
    connection = _telegram_connection(db, test_org)
    adapter = FakePollingAdapter([ExternalAPIError("telegram", 401, "Unauthorized")])
    monkeypatch.setattr(channel_handlers, "get_adapter", lambda platform: adapter)

    with pytest.raises(ExternalAPIError):
        await channel_handlers.process_channel_sync(db, _sync_job(connection))

    db.refresh(connection)
    assert "401" in connection.last_error


@pytest.mark.asyncio
async def test_sync_skips_push_only_connection(db, slack_connection, monkeypatch):
    def fail(platform):
        raise AssertionError("push-only connections are never polled")

    monkeypatch.setattr(channel_handlers, "get_adapter", fail)

    await channel_handlers.process_channel_sync(db, _sync_job(slack_connection))
