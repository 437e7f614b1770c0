"""Channel adapters: request verification and payload normalization."""

import base64
import hashlib
import hmac
import json
import time

import httpx
import pytest
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from supportdesk.core.config import settings
from supportdesk.db.enums import ChannelPlatform
from supportdesk.services.channels import ReplyTarget, get_adapter, is_polling
from supportdesk.services.channels.slack import compute_slack_signature
from supportdesk.services.channels.twilio import compute_twilio_signature
from supportdesk.services.channels.x import x_signature
from supportdesk.services.http_service import ExternalAPIError


# =============================================================================
# Registry
# =============================================================================

def test_get_adapter_accepts_platform_strings():
    assert get_adapter("slack").platform == ChannelPlatform.SLACK
    assert get_adapter(ChannelPlatform.WHATSAPP).platform == ChannelPlatform.WHATSAPP


def test_get_adapter_unknown_platform_raises_key_error():
    with pytest.raises(KeyError):
        get_adapter("myspace")


def test_polling_platforms():
    assert is_polling("gmail") is True
    assert is_polling("telegram") is True
    assert is_polling("discord") is True
    assert is_polling("slack") is False
    assert is_polling("teams") is False
    assert is_polling("myspace") is False


# =============================================================================
# Slack
# =============================================================================

def _slack_headers(secret: str, body: bytes, timestamp: str | None = None) -> dict:
    timestamp = timestamp or str(int(time.time()))
    return {
        "X-Slack-Request-Timestamp": timestamp,
        "X-Slack-Signature": compute_slack_signature(secret, timestamp, body),
    }


def test_slack_signature_valid():
    adapter = get_adapter("slack")
    body = b'{"type":"event_callback"}'
    headers = _slack_headers("slack-secret", body)

    assert adapter.verify_signature(body, headers, url="", secret="slack-secret") is True


def test_slack_signature_rejects_tampered_body():
    adapter = get_adapter("slack")
    headers = _slack_headers("slack-secret", b'{"a":1}')

    assert adapter.verify_signature(b'{"a":2}', headers, url="", secret="slack-secret") is False


def test_slack_signature_rejects_stale_timestamp():
    adapter = get_adapter("slack")
    body = b"{}"
    stale = str(int(time.time()) - 3600)
    headers = _slack_headers("slack-secret", body, timestamp=stale)

    assert adapter.verify_signature(body, headers, url="", secret="slack-secret") is False


def test_slack_signature_requires_secret():
    adapter = get_adapter("slack")
    body = b"{}"
    headers = _slack_headers("slack-secret", body)

    assert adapter.verify_signature(body, headers, url="", secret=None) is False


def test_slack_url_verification_handshake():
    adapter = get_adapter("slack")
    assert adapter.handshake({"type": "url_verification", "challenge": "abc"}) == {"challenge": "abc"}
    assert adapter.handshake({"type": "event_callback"}) is None


def test_slack_normalize_message():
    adapter = get_adapter("slack")
    payload = {
        "type": "event_callback",
        "team_id": "T_ACME",
        "event_id": "Ev1",
        "event": {
            "type": "message",
            "user": "U123",
            "channel": "C_SUPPORT",
            "text": "  My invoice is wrong  ",
            "ts": "1700000000.0001",
            "user_profile": {"real_name": "Grace Hopper"},
        },
    }

    assert adapter.account_key(payload) == "T_ACME"
    [event] = adapter.extract_events(payload)
    message = adapter.normalize(event)

    assert message.body == "My invoice is wrong"
    assert message.external_thread_key == "C_SUPPORT:U123"
    assert message.external_message_id == "1700000000.0001"
    assert message.sender_email == "u123@slack.local"
    assert message.sender_display_name == "Grace Hopper"
    assert message.reply_target["slackThreadTs"] == "1700000000.0001"


def test_slack_ignores_bot_and_edit_events():
    adapter = get_adapter("slack")
    base = {"type": "message", "user": "U1", "channel": "C1", "text": "hi", "ts": "1.1"}

    assert adapter.normalize({**base, "bot_id": "B1"}) is None
    assert adapter.normalize({**base, "subtype": "message_changed"}) is None
    assert adapter.normalize({**base, "text": "   "}) is None
    assert adapter.extract_events({"type": "app_rate_limited"}) == []


@pytest.mark.asyncio
async def test_slack_send_reply_threads_under_message():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"ok": True, "ts": "1700000001.0002"})

    target = ReplyTarget(
        thread_key="C1:U1",
        customer_email="u1@slack.local",
        keys={"slackChannelId": "C1", "slackMessageTs": "1700000000.0001"},
    )
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        receipt = await get_adapter("slack").send_reply(client, {"bot_token": "xoxb-1"}, target, "On it!")

    assert receipt.external_message_id == "1700000001.0002"
    assert seen["auth"] == "Bearer xoxb-1"
    assert seen["body"] == {"channel": "C1", "text": "On it!", "thread_ts": "1700000000.0001"}


@pytest.mark.asyncio
async def test_slack_revoked_token_is_permanent_error():
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"ok": False, "error": "invalid_auth"}))
    target = ReplyTarget(thread_key="C1:U1", customer_email="", keys={"slackChannelId": "C1"})

    async with httpx.AsyncClient(transport=transport) as client:
        with pytest.raises(ExternalAPIError) as exc_info:
            await get_adapter("slack").send_reply(client, {"bot_token": "xoxb-1"}, target, "Hi")

    assert exc_info.value.permanent is True


# =============================================================================
# Twilio (SMS / WhatsApp)
# =============================================================================

def test_twilio_signature_covers_url_and_sorted_params():
    params = {"To": "+15550001111", "From": "+15552223333", "Body": "help"}
    url = "https://support.example.com/webhooks/sms"
    message = url + "BodyhelpFrom+15552223333To+15550001111"
    expected = base64.b64encode(hmac.new(b"tw-token", message.encode(), hashlib.sha1).digest()).decode()

    assert compute_twilio_signature("tw-token", url, params) == expected


def test_twilio_verify_signature_uses_form_body():
    adapter = get_adapter("sms")
    body = b"From=%2B15552223333&To=%2B15550001111&Body=help&MessageSid=SM1"
    url = "https://support.example.com/webhooks/sms"
    payload = adapter.parse(body, {})
    headers = {"X-Twilio-Signature": compute_twilio_signature("tw-token", url, payload)}

    assert adapter.verify_signature(body, headers, url=url, secret="tw-token", payload=payload) is True
    assert adapter.verify_signature(body, headers, url=url + "?x=1", secret="tw-token", payload=payload) is False


def test_whatsapp_strips_address_prefix():
    adapter = get_adapter("whatsapp")
    event = {
        "From": "whatsapp:+15552223333",
        "To": "whatsapp:+15550001111",
        "Body": "Is my order shipped?",
        "MessageSid": "SM42",
        "ProfileName": "Linus",
    }

    assert adapter.account_key(event) == "+15550001111"
    message = adapter.normalize(event)
    assert message.external_thread_key == "+15552223333"
    assert message.sender_email == "+15552223333@whatsapp.local"
    assert message.sender_display_name == "Linus"
    assert message.thread_metadata == {"twilioFrom": "+15552223333", "twilioTo": "+15550001111"}


def test_twilio_ignores_status_callbacks():
    adapter = get_adapter("sms")
    event = {"From": "+1555", "To": "+1666", "Body": "x", "MessageSid": "SM1", "SmsStatus": "delivered"}

    assert adapter.normalize(event) is None


# =============================================================================
# Telegram
# =============================================================================

def _telegram_update(text: str, *, update_id: int = 10, is_bot: bool = False) -> dict:
    return {
        "update_id": update_id,
        "message": {
            "message_id": 7,
            "from": {"id": 501, "is_bot": is_bot, "first_name": "Ada", "username": "AdaL"},
            "chat": {"id": -1001, "title": "Acme customers"},
            "text": text,
        },
    }


def test_telegram_structural_check_without_secret():
    adapter = get_adapter("telegram")
    assert adapter.verify_signature(b"", {}, url="", secret=None, payload={"update_id": 1}) is True
    assert adapter.verify_signature(b"", {}, url="", secret=None, payload={"update_id": "1"}) is False


def test_telegram_secret_token_header():
    adapter = get_adapter("telegram")
    headers = {"X-Telegram-Bot-Api-Secret-Token": "tg-secret"}

    assert adapter.verify_signature(b"", headers, url="", secret="tg-secret", payload={}) is True
    assert adapter.verify_signature(b"", {}, url="", secret="tg-secret", payload={"update_id": 1}) is False


def test_telegram_connect_command_yields_setup_code():
    adapter = get_adapter("telegram")
    update = _telegram_update("/connect ab12cd")

    assert adapter.setup_code(update) == "AB12CD"
    assert adapter.account_key(update) == "-1001"
    # The link command itself never becomes a ticket
    assert adapter.normalize(update) is None


def test_telegram_normalize_message():
    message = get_adapter("telegram").normalize(_telegram_update("Card declined twice"))

    assert message.external_message_id == "-1001:7"
    assert message.external_thread_key == "-1001"
    assert message.sender_email == "adal@telegram.local"
    assert message.identity_hints == ["501", "adal"]


def test_telegram_skips_bots():
    assert get_adapter("telegram").normalize(_telegram_update("hi", is_bot=True)) is None


@pytest.mark.asyncio
async def test_telegram_poll_advances_offset_past_skipped_updates():
    updates = [_telegram_update("first", update_id=40), _telegram_update("bot", update_id=41, is_bot=True)]
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["offset"] = request.url.params.get("offset")
        return httpx.Response(200, json={"ok": True, "result": updates})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        messages, cursor = await get_adapter("telegram").fetch_new_since(client, {"bot_token": "123:abc"}, "40", {})

    assert seen["offset"] == "40"
    assert [m.body for m in messages] == ["first"]
    assert cursor == "42"


# =============================================================================
# Discord
# =============================================================================

def _discord_keys():
    private_key = Ed25519PrivateKey.generate()
    public_hex = private_key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw).hex()
    return private_key, public_hex


def test_discord_ed25519_signature():
    private_key, public_hex = _discord_keys()
    adapter = get_adapter("discord")
    body = b'{"type":1}'
    timestamp = "1700000000"
    headers = {
        "X-Signature-Ed25519": private_key.sign(timestamp.encode() + body).hex(),
        "X-Signature-Timestamp": timestamp,
    }

    assert adapter.verify_signature(body, headers, url="", secret=public_hex) is True
    assert adapter.verify_signature(b'{"type":2}', headers, url="", secret=public_hex) is False
    assert adapter.verify_signature(body, headers, url="", secret="not-hex") is False


def test_discord_ping_and_support_command():
    adapter = get_adapter("discord")
    assert adapter.handshake({"type": 1}) == {"type": 1}

    interaction = {
        "type": 2,
        "id": "9001",
        "guild_id": "G1",
        "channel_id": "CH1",
        "member": {"user": {"id": "42", "username": "grace"}},
        "data": {"name": "support", "options": [{"name": "message", "value": "Refund please"}]},
    }
    [event] = adapter.extract_events(interaction)
    message = adapter.normalize(event)

    assert adapter.account_key(interaction) == "G1"
    assert message.body == "Refund please"
    assert message.external_thread_key == "CH1:42"
    assert message.sender_email == "42@discord.local"

    ack = adapter.acknowledge(interaction, 1)
    assert ack["type"] == 4
    assert ack["data"]["flags"] == 64


def test_discord_other_commands_are_not_ingested():
    adapter = get_adapter("discord")
    assert adapter.extract_events({"type": 2, "data": {"name": "ban"}}) == []


# =============================================================================
# Instagram
# =============================================================================

def test_instagram_signature():
    adapter = get_adapter("instagram")
    body = b'{"object":"instagram"}'
    digest = hmac.new(b"meta-secret", body, hashlib.sha256).hexdigest()

    assert adapter.verify_signature(body, {"X-Hub-Signature-256": f"sha256={digest}"}, url="", secret="meta-secret")
    assert not adapter.verify_signature(body, {"X-Hub-Signature-256": digest}, url="", secret="meta-secret")


def test_instagram_subscription_challenge(monkeypatch):
    monkeypatch.setattr(settings, "META_VERIFY_TOKEN", "verify-me")
    adapter = get_adapter("instagram")
    query = {"hub.mode": "subscribe", "hub.verify_token": "verify-me", "hub.challenge": "1158201444"}

    assert adapter.verify_challenge(query, None) == "1158201444"
    assert adapter.verify_challenge({**query, "hub.verify_token": "nope"}, None) is None


def test_instagram_dm_and_comment_events():
    adapter = get_adapter("instagram")
    payload = {
        "object": "instagram",
        "entry": [
            {
                "id": "IG_ACME",
                "messaging": [
                    {"sender": {"id": "777"}, "message": {"mid": "m1", "text": "Do you ship to Lagos?"}},
                    {"sender": {"id": "IG_ACME"}, "message": {"mid": "m2", "text": "echo", "is_echo": True}},
                ],
                "changes": [
                    {
                        "field": "comments",
                        "value": {
                            "id": "c1",
                            "text": "Price?",
                            "from": {"id": "888", "username": "Shopper"},
                            "media": {"id": "media9"},
                        },
                    }
                ],
            }
        ],
    }

    assert adapter.account_key(payload) == "IG_ACME"
    messages = [m for m in map(adapter.normalize, adapter.extract_events(payload)) if m]

    assert [m.external_thread_key for m in messages] == ["777", "comment:media9:888"]
    assert messages[1].identity_hints == ["888", "shopper"]


# =============================================================================
# X
# =============================================================================

def test_x_crc_challenge():
    adapter = get_adapter("x")
    expected = base64.b64encode(hmac.new(b"consumer", b"crc123", hashlib.sha256).digest()).decode()

    assert adapter.verify_challenge({"crc_token": "crc123"}, "consumer") == {"response_token": f"sha256={expected}"}
    assert adapter.verify_challenge({}, "consumer") is None


def test_x_signature_header():
    adapter = get_adapter("x")
    body = b'{"for_user_id":"1"}'
    headers = {"X-Twitter-Webhooks-Signature": x_signature("consumer", body)}

    assert adapter.verify_signature(body, headers, url="", secret="consumer") is True


def test_x_dm_skips_own_messages():
    adapter = get_adapter("x")
    payload = {
        "for_user_id": "100",
        "users": {"200": {"name": "Margaret", "screen_name": "mham"}},
        "direct_message_events": [
            {"type": "message_create", "id": "dm1", "message_create": {"sender_id": "200", "message_data": {"text": "Hi"}}},
            {"type": "message_create", "id": "dm2", "message_create": {"sender_id": "100", "message_data": {"text": "Reply"}}},
        ],
    }

    messages = [m for m in map(adapter.normalize, adapter.extract_events(payload)) if m]

    assert len(messages) == 1
    assert messages[0].external_thread_key == "dm:200"
    assert messages[0].sender_display_name == "Margaret"
    assert messages[0].sender_email == "200@twitter.local"


# =============================================================================
# Gmail
# =============================================================================

def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode().rstrip("=")


def test_gmail_push_token_in_url():
    adapter = get_adapter("gmail")
    url = "https://support.example.com/webhooks/gmail?token=push-token"

    assert adapter.verify_signature(b"", {}, url=url, secret="push-token") is True
    assert adapter.verify_signature(b"", {}, url=url, secret="other") is False


def test_gmail_notification_schedules_sync():
    adapter = get_adapter("gmail")
    data = _b64url(json.dumps({"emailAddress": "Support@Acme.test", "historyId": 9876}).encode())
    payload = {"message": {"data": data, "messageId": "1"}, "subscription": "projects/x/subscriptions/y"}

    assert adapter.account_key(payload) == "support@acme.test"
    assert adapter.sync_marker(payload) == "9876"
    assert adapter.extract_events(payload) == []


def test_gmail_normalize_strips_quoted_history():
    adapter = get_adapter("gmail")
    body = "Still waiting on my refund.\n\nOn Mon, Jan 1, 2024 Support wrote:\n> We are on it"
    resource = {
        "id": "msg1",
        "threadId": "thr1",
        "labelIds": ["INBOX"],
        "_mailbox": "support@acme.test",
        "payload": {
            "mimeType": "multipart/alternative",
            "headers": [
                {"name": "From", "value": "Jane Doe <Jane@Example.com>"},
                {"name": "Subject", "value": "Re: Refund"},
                {"name": "Message-ID", "value": "<abc@mail>"},
            ],
            "parts": [{"mimeType": "text/plain", "body": {"data": _b64url(body.encode())}}],
        },
    }

    message = adapter.normalize(resource)

    assert message.body == "Still waiting on my refund."
    assert message.sender_email == "jane@example.com"
    assert message.external_thread_key == "thr1"
    assert message.reply_target["emailMessageId"] == "<abc@mail>"


def test_gmail_skips_sent_mail_and_own_mailbox():
    adapter = get_adapter("gmail")
    headers = [{"name": "From", "value": "support@acme.test"}]
    resource = {"id": "m", "snippet": "hi", "_mailbox": "support@acme.test", "payload": {"headers": headers}}

    assert adapter.normalize({**resource, "labelIds": ["SENT"]}) is None
    assert adapter.normalize(resource) is None


def _gmail_mailbox_api(total: int, page_size: int = 60):
    """History API over ``total`` records (ids 1001..), one added message each."""
    records = [{"id": str(1000 + n), "messagesAdded": [{"message": {"id": f"m{n}"}}]} for n in range(1, total + 1)]
    head = str(1000 + total)

    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path.endswith("/history"):
            start = int(request.url.params["startHistoryId"])
            after = [r for r in records if int(r["id"]) > start]
            offset = int(request.url.params.get("pageToken", "0"))
            body = {"history": after[offset : offset + page_size], "historyId": head}
            if offset + page_size < len(after):
                body["nextPageToken"] = str(offset + page_size)
            return httpx.Response(200, json=body)
        message_id = path.rsplit("/", 1)[-1]
        headers = [{"name": "From", "value": "jane@example.com"}, {"name": "Subject", "value": message_id}]
        return httpx.Response(
            200,
            json={"id": message_id, "threadId": message_id, "snippet": "hello", "payload": {"headers": headers}},
        )

    return handler


@pytest.mark.asyncio
async def test_gmail_capped_sync_resumes_where_it_stopped():
    adapter = get_adapter("gmail")
    credentials = {"access_token": "ya29"}
    metadata = {"email": "support@acme.test"}

    async with httpx.AsyncClient(transport=httpx.MockTransport(_gmail_mailbox_api(150))) as client:
        first, cursor = await adapter.fetch_new_since(client, credentials, "1000", metadata)
        second, final_cursor = await adapter.fetch_new_since(client, credentials, cursor, metadata)

    assert len(first) == 100
    assert cursor == "1100"
    ingested = [m.external_message_id for m in first + second]
    assert ingested == [f"m{n}" for n in range(1, 151)]
    assert final_cursor == "1150"


# =============================================================================
# Microsoft Teams
# =============================================================================

TEAMS_SECRET = base64.b64encode(b"teams-webhook-key").decode()


def _teams_activity(text: str = "<at>Support</at> My invoice is wrong", **overrides) -> dict:
    activity = {
        "type": "message",
        "id": "1700000000001",
        "serviceUrl": "https://smba.trafficmanager.net/emea/",
        "text": text,
        "from": {"id": "29:1abc", "name": "Grace Hopper", "aadObjectId": "6F1C2D3E-0000-4000-8000-000000000001"},
        "conversation": {"id": "19:chat-1@thread.v2", "tenantId": "tenant-1"},
        "channelData": {"tenant": {"id": "tenant-1"}},
    }
    activity.update(overrides)
    return activity


def test_teams_hmac_signature():
    adapter = get_adapter("teams")
    body = json.dumps(_teams_activity()).encode()
    signature = base64.b64encode(hmac.new(b"teams-webhook-key", body, hashlib.sha256).digest()).decode()
    url = "https://support.example.com/webhooks/teams"

    assert adapter.verify_signature(body, {"Authorization": f"HMAC {signature}"}, url=url, secret=TEAMS_SECRET)
    assert not adapter.verify_signature(body + b" ", {"Authorization": f"HMAC {signature}"}, url=url, secret=TEAMS_SECRET)
    assert not adapter.verify_signature(body, {"Authorization": f"Bearer {signature}"}, url=url, secret=TEAMS_SECRET)
    assert not adapter.verify_signature(body, {"Authorization": f"HMAC {signature}"}, url=url, secret=None)


def test_teams_normalize_message():
    adapter = get_adapter("teams")
    activity = _teams_activity()

    message = adapter.normalize(activity)

    assert adapter.account_key(activity) == "tenant-1"
    assert message.platform == ChannelPlatform.TEAMS
    assert message.body == "My invoice is wrong"
    assert message.sender_email == "6f1c2d3e-0000-4000-8000-000000000001@teams.local"
    assert message.sender_display_name == "Grace Hopper"
    assert message.external_thread_key == "19:chat-1@thread.v2"
    assert message.external_message_id == "19:chat-1@thread.v2:1700000000001"
    assert message.thread_metadata == {"teamsConversationId": "19:chat-1@thread.v2"}


def test_teams_without_aad_object_id_falls_back_to_user_id():
    activity = _teams_activity(**{"from": {"id": "29:guest"}})

    message = get_adapter("teams").normalize(activity)

    assert message.sender_email == "29:guest@teams.local"
    assert message.sender_display_name == "Teams User 29:guest"


def test_teams_skips_bots_and_non_messages():
    adapter = get_adapter("teams")

    assert adapter.normalize(_teams_activity(type="conversationUpdate")) is None
    assert adapter.normalize(_teams_activity(**{"from": {"id": "28:bot", "role": "bot"}})) is None
    assert adapter.normalize(_teams_activity(text="<at>Support</at>")) is None


@pytest.mark.asyncio
async def test_teams_channel_reply_goes_to_graph_channel():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(201, json={"id": "1700000000099"})

    target = ReplyTarget(
        thread_key="19:general@thread.tacv2",
        customer_email="x@teams.local",
        keys={"teamsConversationId": "19:general@thread.tacv2", "teamsTeamId": "team-1", "teamsChannelId": "chan-1"},
    )
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        receipt = await get_adapter("teams").send_reply(client, {"access_token": "eyJ0"}, target, "Fixed it")

    assert seen["url"] == "https://graph.microsoft.com/v1.0/teams/team-1/channels/chan-1/messages"
    assert seen["auth"] == "Bearer eyJ0"
    assert seen["body"] == {"body": {"content": "Fixed it"}}
    assert receipt.external_message_id == "1700000000099"


@pytest.mark.asyncio
async def test_teams_chat_reply_and_missing_token():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        return httpx.Response(201, json={"id": "m2"})

    target = ReplyTarget(thread_key="19:chat-1@thread.v2", customer_email="x@teams.local")
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        await get_adapter("teams").send_reply(client, {"access_token": "eyJ0"}, target, "Hi")
        with pytest.raises(ExternalAPIError) as exc_info:
            await get_adapter("teams").send_reply(client, {}, target, "Hi")

    assert seen["url"] == "https://graph.microsoft.com/v1.0/chats/19:chat-1@thread.v2/messages"
    assert exc_info.value.permanent is True


@pytest.mark.asyncio
async def test_teams_refresh_rotates_tokens(monkeypatch):
    monkeypatch.setattr(settings, "TEAMS_CLIENT_ID", "client-1")
    monkeypatch.setattr(settings, "TEAMS_CLIENT_SECRET", "shh")
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["form"] = dict(pair.split("=", 1) for pair in request.content.decode().split("&"))
        return httpx.Response(200, json={"access_token": "new-access", "refresh_token": "new-refresh", "expires_in": 3600})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        refreshed = await get_adapter("teams").refresh_credentials(
            client, {"access_token": "old", "refresh_token": "old-refresh"}
        )

    assert seen["url"] == "https://login.microsoftonline.com/common/oauth2/v2.0/token"
    assert seen["form"]["grant_type"] == "refresh_token"
    assert seen["form"]["refresh_token"] == "old-refresh"
    assert refreshed == {"access_token": "new-access", "refresh_token": "new-refresh", "expires_in": 3600}


@pytest.mark.asyncio
async def test_teams_refresh_needs_client_and_refresh_token(monkeypatch):
    monkeypatch.setattr(settings, "TEAMS_CLIENT_ID", "")

    async with httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(500))) as client:
        assert await get_adapter("teams").refresh_credentials(client, {"refresh_token": "r"}) is None


# =============================================================================
# Widget
# =============================================================================

def test_widget_visitor_gets_placeholder_email():
    message = get_adapter("widget").normalize(
        {"visitor_id": "V1", "session_id": "S1", "content": "Hello there", "client_message_id": "c-1"}
    )

    assert message.sender_email == "visitor-v1@widget.local"
    assert message.external_thread_key == "S1"
    assert message.external_message_id == "c-1"
