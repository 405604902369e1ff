import json
from datetime import datetime, timezone
from decimal import Decimal
from typing import List

import httpx
import pytest

from bloodwatch.services.contracts import (
    Category,
    DispatchEvent,
    EventPayload,
    FailureKind,
    RegionRef,
    SourceRef,
)
from bloodwatch.services.notifiers import (
    DiscordWebhookNotifier,
    NotifierRegistry,
    TelegramNotifier,
    is_canonical,
    normalize_type_key,
    to_legacy,
)
from bloodwatch.services.notifiers.discord import build_webhook_payload
from bloodwatch.services.notifiers.formatter import (
    COLOR_ALERT,
    COLOR_RECOVERY,
    build_message,
    friendly_category_label,
)
from bloodwatch.services.notifiers.telegram import classify_telegram_failure

WEBHOOK_URL = "https://discord.com/api/webhooks/123/secret"


def make_event(**payload) -> DispatchEvent:
    values = dict(
        signal="critical-active",
        transition_kind="entered-critical",
        captured_at=datetime(2026, 2, 19, 12, 0, tzinfo=timezone.utc),
        previous_units=Decimal("130"),
        current_units=Decimal("90"),
        critical_units=Decimal("140"),
        current_critical_bucket=3,
    )
    values.update(payload)
    return DispatchEvent(
        event_id="evt-1",
        rule_key="low-stock-threshold.v1",
        source=SourceRef("pt-transparencia-sns", "Portugal SNS Transparency"),
        region=RegionRef("pt-norte", "Regiao de Saude Norte"),
        category=Category("blood-group-o-minus", "O-"),
        created_at=datetime(2026, 2, 19, 12, 1, tzinfo=timezone.utc),
        payload=EventPayload(**values),
    )


def mock_client(status_code: int, body=None, requests: List[httpx.Request] = None):
    def handler(request: httpx.Request) -> httpx.Response:
        if requests is not None:
            requests.append(request)
        return httpx.Response(status_code, json=body if body is not None else {})

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


# --- Type keys ---


def test_type_key_normalization():
    assert normalize_type_key("discord-webhook") == "discord:webhook"
    assert normalize_type_key(" telegram:chat ") == "telegram:chat"
    assert normalize_type_key("sms") is None
    assert normalize_type_key("") is None
    assert to_legacy("telegram:chat") == "telegram-chat"
    assert is_canonical("discord:webhook")
    assert not is_canonical("discord-webhook")


def test_registry_resolves_legacy_spellings():
    client = httpx.AsyncClient()
    registry = NotifierRegistry([DiscordWebhookNotifier(client)])

    assert registry.get("discord-webhook") is registry.get("discord:webhook")
    assert "discord-webhook" in registry
    assert registry.get("telegram:chat") is None
    assert registry.type_keys == ["discord:webhook"]
    assert len(registry) == 1


# --- Formatting ---


@pytest.mark.parametrize(
    "key,label",
    [
        ("blood-group-o-minus", "O-"),
        ("blood-group-ab-plus", "AB+"),
        ("overall", "overall"),
        ("", "Unknown"),
    ],
)
def test_friendly_category_label(key, label):
    assert friendly_category_label(key) == label


def test_numeric_message_shows_units_and_level():
    message = build_message(make_event())

    assert message.title == "Critical reserve level"
    assert message.color == COLOR_ALERT
    assert "threshold 140 units" in message.description
    assert message.previous_label == "130 units"
    assert message.current_label == "90 units (level 3)"
    assert message.change_summary == "130 units -> 90 units (level 3)"
    assert message.captured_at_label == "2026-02-19 12:00 UTC"


def test_status_message_uses_status_labels():
    message = build_message(
        make_event(
            signal="status-alert",
            transition_kind="worsened",
            current_units=None,
            current_critical_bucket=None,
            previous_status_key="warning",
            previous_status_label="Warning",
            current_status_key="critical",
            current_status_label="Critical",
        )
    )

    assert message.title == "Reserve status worsened"
    assert message.change_summary == "Warning -> Critical"


def test_recovery_and_worsening_templates():
    recovery = build_message(
        make_event(signal="recovery", transition_kind="recovered-from-critical")
    )
    worsening = build_message(
        make_event(transition_kind="still-critical").with_notification_kind(
            "critical-worsening"
        )
    )

    assert recovery.title == "Reserve status recovered"
    assert recovery.color == COLOR_RECOVERY
    assert worsening.title == "Critical reserve worsening"


def test_webhook_payload_has_embed_fields():
    body = build_webhook_payload(make_event())

    assert body["content"] == "BloodWatch: Critical reserve level"
    embed = body["embeds"][0]
    assert embed["color"] == COLOR_ALERT
    assert {"name": "Blood group", "value": "O-", "inline": True} in embed["fields"]


# --- Discord ---


@pytest.mark.asyncio
async def test_discord_success():
    requests: List[httpx.Request] = []
    async with mock_client(204, requests=requests) as client:
        outcome = await DiscordWebhookNotifier(client).send(make_event(), WEBHOOK_URL)

    assert outcome.is_sent
    assert str(requests[0].url) == WEBHOOK_URL
    assert json.loads(requests[0].content)["embeds"][0]["title"] == "Critical reserve level"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status_code,kind",
    [
        (429, FailureKind.TRANSIENT),
        (500, FailureKind.TRANSIENT),
        (503, FailureKind.TRANSIENT),
        (400, FailureKind.PERMANENT),
        (404, FailureKind.PERMANENT),
    ],
)
async def test_discord_failure_classification(status_code, kind):
    async with mock_client(status_code) as client:
        outcome = await DiscordWebhookNotifier(client).send(make_event(), WEBHOOK_URL)

    assert not outcome.is_sent
    assert outcome.failure_kind == kind
    assert outcome.error.startswith(f"Discord webhook returned {status_code}")


@pytest.mark.asyncio
async def test_discord_rejects_non_http_target():
    async with mock_client(204) as client:
        outcome = await DiscordWebhookNotifier(client).send(make_event(), "not-a-url")

    assert outcome.failure_kind == FailureKind.PERMANENT


@pytest.mark.asyncio
async def test_discord_timeout_is_transient():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        outcome = await DiscordWebhookNotifier(client).send(make_event(), WEBHOOK_URL)

    assert outcome.failure_kind == FailureKind.TRANSIENT
    assert outcome.error.startswith("Request timed out")


@pytest.mark.asyncio
async def test_discord_connection_error_is_transient():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        outcome = await DiscordWebhookNotifier(client).send(make_event(), WEBHOOK_URL)

    assert outcome.failure_kind == FailureKind.TRANSIENT


# --- Telegram ---


@pytest.mark.asyncio
async def test_telegram_success_posts_send_message():
    requests: List[httpx.Request] = []
    async with mock_client(200, {"ok": True, "result": {}}, requests) as client:
        notifier = TelegramNotifier(client, bot_token="123:abc")
        outcome = await notifier.send(make_event(), "-100200300")

    assert outcome.is_sent
    assert str(requests[0].url) == "https://api.telegram.org/bot123:abc/sendMessage"
    body = json.loads(requests[0].content)
    assert body["chat_id"] == "-100200300"
    assert body["disable_web_page_preview"] is True
    assert body["text"].startswith("BloodWatch: Critical reserve level")


@pytest.mark.asyncio
async def test_telegram_ok_false_is_failure():
    async with mock_client(200, {"ok": False, "description": "Too Many Requests"}) as client:
        outcome = await TelegramNotifier(client, "123:abc").send(make_event(), "42")

    assert outcome.failure_kind == FailureKind.TRANSIENT


@pytest.mark.asyncio
async def test_telegram_chat_not_found_is_permanent():
    body = {"ok": False, "error_code": 400, "description": "Bad Request: chat not found"}
    async with mock_client(400, body) as client:
        outcome = await TelegramNotifier(client, "123:abc").send(make_event(), "42")

    assert outcome.failure_kind == FailureKind.PERMANENT
    assert "chat not found" in outcome.error


@pytest.mark.asyncio
async def test_telegram_without_token_is_permanent():
    requests: List[httpx.Request] = []
    async with mock_client(200, {"ok": True}, requests) as client:
        outcome = await TelegramNotifier(client, bot_token=None).send(make_event(), "42")

    assert outcome.failure_kind == FailureKind.PERMANENT
    assert outcome.error == "Telegram bot token is not configured."
    assert requests == []


@pytest.mark.asyncio
async def test_telegram_empty_chat_id_is_permanent():
    async with mock_client(200, {"ok": True}) as client:
        outcome = await TelegramNotifier(client, "123:abc").send(make_event(), "  ")

    assert outcome.failure_kind == FailureKind.PERMANENT


@pytest.mark.parametrize(
    "status_code,error_code,description,kind",
    [
        (429, None, None, FailureKind.TRANSIENT),
        (200, 429, None, FailureKind.TRANSIENT),
        (502, None, None, FailureKind.TRANSIENT),
        (401, None, None, FailureKind.PERMANENT),
        (403, None, "Forbidden: bot was blocked by the user", FailureKind.PERMANENT),
        (400, 400, "Bad Request: request timeout", FailureKind.TRANSIENT),
        (400, 400, "Bad Request: chat_id is empty", FailureKind.PERMANENT),
        (400, 400, "Bad Request: message is too long", FailureKind.PERMANENT),
        (200, None, None, FailureKind.TRANSIENT),
    ],
)
def test_classify_telegram_failure(status_code, error_code, description, kind):
    assert classify_telegram_failure(status_code, error_code, description) == kind
