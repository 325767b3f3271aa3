"""Tests for formatters, the Telegram sink and the notification dispatcher."""

from __future__ import annotations

import asyncio
from types import SimpleNamespace
from typing import Any

from telegram.constants import ParseMode
from telegram.error import BadRequest

from mostaql_hub.config import TelegramConfig
from mostaql_hub.hub.hub import NotificationHub
from mostaql_hub.notifier.dispatcher import NotificationDispatcher
from mostaql_hub.notifier.formatters import (
    format_listing_alert,
    format_listings_batch,
    format_new_listings,
    format_system_status,
    format_tracked_update,
)
from mostaql_hub.notifier.telegram_bot import TelegramNotifier, split_message, strip_html
from mostaql_hub.tracker import TrackedUpdate

from conftest import make_listing

CONFIG = TelegramConfig(bot_token="123:abc", chat_id="42")


class FakeBot:
    def __init__(self, reject_html: bool = False, fail: Exception | None = None) -> None:
        self.sent: list[dict[str, Any]] = []
        self.reject_html = reject_html
        self.fail = fail

    async def get_me(self):
        return SimpleNamespace(username="mostaql_hub_bot")

    async def send_message(self, **kwargs):
        if self.fail is not None:
            raise self.fail
        if self.reject_html and kwargs.get("parse_mode") == ParseMode.HTML:
            raise BadRequest("Can't parse entities: unsupported start tag")
        self.sent.append(kwargs)
        return SimpleNamespace(message_id=len(self.sent))


# ═══════════════════════════════════════════════════════════
# Formatters
# ═══════════════════════════════════════════════════════════


def test_listing_alert_escapes_and_truncates():
    listing = make_listing("1", title="<script> & co", description="x" * 400, hiring_rate_raw="85%")
    text = format_listing_alert(listing)
    assert "&lt;script&gt; &amp; co" in text
    assert "85%" in text
    assert "x" * 300 + "..." in text
    assert "x" * 301 not in text
    assert 'href="https://mostaql.com/project/1"' in text


def test_new_listings_picks_layout_by_count():
    one = [make_listing("1")]
    many = [make_listing("1"), make_listing("2", title="Second")]
    assert format_new_listings(one) == format_listing_alert(one[0])
    assert format_new_listings(many) == format_listings_batch(many)
    assert "Second" in format_listings_batch(many)


def test_tracked_update_lists_changes():
    text = format_tracked_update("My bid", "https://mostaql.com/project/5", ["الحالة: مفتوح -> مغلق"])
    assert "My bid" in text
    assert "الحالة: مفتوح -&gt; مغلق" in text


def test_status_sums_error_counters():
    text = format_system_status({"uptime": "1h 2m", "today_count": 3, "errors": {"fetch": 2, "parse": 1}})
    assert "1h 2m" in text
    assert "3" in text
    assert "❌" in text


def test_split_message_prefers_paragraphs():
    text = ("a" * 30 + "\n\n") * 5
    chunks = split_message(text, max_len=70)
    assert all(len(c) <= 70 for c in chunks)
    assert "".join(chunks).replace("\n", "") == "a" * 150


def test_strip_html_keeps_link_targets():
    assert strip_html('<b>Hi</b> <a href="https://x.y">there</a> &amp; bye') == "Hi there (https://x.y) & bye"


# ═══════════════════════════════════════════════════════════
# Telegram sink
# ═══════════════════════════════════════════════════════════


def test_send_message_uses_html_and_preview_options():
    bot = FakeBot()
    notifier = TelegramNotifier(CONFIG, bot=bot)

    msg_id = asyncio.run(notifier.send_message("<b>hello</b>", disable_preview=True))

    assert msg_id == "1"
    sent = bot.sent[0]
    assert sent["chat_id"] == "42"
    assert sent["parse_mode"] == ParseMode.HTML
    assert sent["link_preview_options"].is_disabled is True
    assert notifier.sent_count == 1


def test_html_rejection_falls_back_to_plain_text():
    bot = FakeBot(reject_html=True)
    notifier = TelegramNotifier(CONFIG, bot=bot)

    msg_id = asyncio.run(notifier.send_message('<b>hi</b> <a href="https://x">link</a>'))

    assert msg_id == "1"
    assert bot.sent[0]["text"] == "hi link (https://x)"
    assert "parse_mode" not in bot.sent[0]


def test_open_circuit_drops_messages():
    bot = FakeBot()
    notifier = TelegramNotifier(CONFIG, bot=bot)
    for _ in range(notifier.circuit_breaker.failure_threshold):
        notifier.circuit_breaker.record_failure(RuntimeError("down"))

    assert asyncio.run(notifier.send_message("hello")) is None
    assert bot.sent == []


def test_initialize_reports_connection():
    assert asyncio.run(TelegramNotifier(CONFIG, bot=FakeBot()).initialize())


# ═══════════════════════════════════════════════════════════
# Dispatcher
# ═══════════════════════════════════════════════════════════


def test_dispatcher_fans_out_to_hub_and_telegram():
    received: list[dict[str, Any]] = []

    async def subscriber(message):
        received.append(message)

    async def scenario():
        hub = NotificationHub()
        await hub.subscribe(subscriber)
        bot = FakeBot()
        dispatcher = NotificationDispatcher(hub=hub, telegram=TelegramNotifier(CONFIG, bot=bot))
        report = await dispatcher.dispatch_listings([make_listing("1"), make_listing("2")])
        return report, bot, dispatcher

    report, bot, dispatcher = asyncio.run(scenario())
    assert report.hub_delivered == 1
    assert report.telegram_sent is True
    assert received[-1]["count"] == 2
    assert len(bot.sent) == 1
    assert dispatcher.sink_names == ["log", "hub", "telegram"]


def test_telegram_failure_does_not_affect_hub():
    received: list[dict[str, Any]] = []

    async def subscriber(message):
        received.append(message)

    async def scenario():
        hub = NotificationHub()
        await hub.subscribe(subscriber)
        bot = FakeBot(fail=BadRequest("Chat not found"))
        dispatcher = NotificationDispatcher(hub=hub, telegram=TelegramNotifier(CONFIG, bot=bot))
        return await dispatcher.dispatch_listings([make_listing("1")])

    report = asyncio.run(scenario())
    assert report.hub_delivered == 1
    assert report.telegram_sent is False
    assert received[-1]["listings"][0]["id"] == "1"


def test_empty_batch_is_not_dispatched():
    bot = FakeBot()
    dispatcher = NotificationDispatcher(telegram=TelegramNotifier(CONFIG, bot=bot))
    report = asyncio.run(dispatcher.dispatch_listings([]))
    assert report.telegram_sent is None
    assert bot.sent == []


def test_tracked_update_broadcast_to_subscribers():
    received: list[dict[str, Any]] = []

    async def subscriber(message):
        received.append(message)

    update = TrackedUpdate(
        url="https://mostaql.com/project/77",
        title="My bid",
        status="مغلق",
        communications="3",
        changes=("الحالة: مفتوح -> مغلق",),
    )

    async def scenario():
        hub = NotificationHub()
        await hub.subscribe(subscriber)
        await NotificationDispatcher(hub=hub).dispatch_tracked_update(update)

    asyncio.run(scenario())
    message = received[-1]
    assert message["event"] == "TrackedProjectUpdated"
    assert message["project"]["id"] == "77"
    assert message["changes"] == ["الحالة: مفتوح -> مغلق"]
