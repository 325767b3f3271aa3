"""Mostaql Hub — Telegram Sink.

Async Telegram bot client (python-telegram-bot v22+) used as the
external messaging sink. Sends HTML messages with:
  - Splitting at paragraph/line boundaries above 4000 chars
  - Plain-text fallback when Telegram rejects the HTML
  - Retries on RetryAfter, TimedOut and NetworkError
  - A circuit breaker so a dead API is not hammered every cycle
"""

from __future__ import annotations

import asyncio
import html
import re
from datetime import timedelta
from typing import Any, Optional, Union

from telegram import Bot, LinkPreviewOptions
from telegram.constants import ParseMode
from telegram.error import BadRequest, NetworkError, RetryAfter, TimedOut

from mostaql_hub.config import TelegramConfig
from mostaql_hub.utils.logger import get_logger
from mostaql_hub.utils.resilience import CircuitBreaker

logger = get_logger(__name__)

_SAFE_LEN = 4000  # Telegram's hard limit is 4096
_MAX_ATTEMPTS = 3


def split_message(text: str, max_len: int = _SAFE_LEN) -> list[str]:
    """Split long text at paragraph, then line, then hard boundaries."""
    if len(text) <= max_len:
        return [text]

    chunks: list[str] = []
    remaining = text
    while len(remaining) > max_len:
        cut = remaining.rfind("\n\n", 0, max_len)
        if cut <= 0:
            cut = remaining.rfind("\n", 0, max_len)
        if cut <= 0:
            cut = max_len
        chunks.append(remaining[:cut].rstrip())
        remaining = remaining[cut:].lstrip("\n")

    if remaining.strip():
        chunks.append(remaining.strip())
    return chunks


def strip_html(text: str) -> str:
    """Plain-text rendering of an HTML message: links become "text (url)"."""
    text = re.sub(r'<a href="([^"]+)">([^<]+)</a>', r"\2 (\1)", text)
    text = re.sub(r"<[^>]+>", "", text)
    return html.unescape(text)


def _seconds(value: Union[int, float, timedelta]) -> float:
    if isinstance(value, timedelta):
        return value.total_seconds()
    return float(value)


class TelegramNotifier:
    """Sends formatted messages to one Telegram chat.

    Attributes:
        config: Bot token and chat id.
        circuit_breaker: Opens after repeated send failures.
    """

    def __init__(self, config: TelegramConfig, bot: Optional[Any] = None) -> None:
        """Create the notifier.

        Args:
            config: TelegramConfig; must be enabled unless a bot is injected.
            bot: Optional Bot-like object (used by tests).
        """
        self.config = config
        self._bot = bot if bot is not None else Bot(token=config.bot_token)
        self.circuit_breaker = CircuitBreaker(
            name="telegram",
            failure_threshold=5,
            cooldown_seconds=300,
        )
        self.sent_count = 0

    async def initialize(self) -> bool:
        """Verify the token with getMe."""
        try:
            me = await self._bot.get_me()
        except Exception as e:
            logger.error("❌ Telegram bot connection failed: %s", e)
            return False
        logger.info("✅ Telegram bot connected: @%s", me.username)
        return True

    async def send_message(self, text: str, disable_preview: bool = False) -> Optional[str]:
        """Send an HTML message, split if needed.

        Returns:
            Id of the last message sent, or None if nothing was delivered.
        """
        if not text:
            return None
        if self.circuit_breaker.is_open:
            logger.warning(
                "Telegram circuit OPEN, dropping message (retry in %.0fs)",
                self.circuit_breaker.remaining_cooldown,
            )
            return None

        chunks = split_message(text)
        last_id: Optional[str] = None
        for i, chunk in enumerate(chunks):
            msg_id = await self._send_single(chunk, disable_preview)
            if msg_id is not None:
                last_id = msg_id
            if i < len(chunks) - 1:
                await asyncio.sleep(0.5)
        return last_id

    async def _send_single(self, text: str, disable_preview: bool) -> Optional[str]:
        preview = LinkPreviewOptions(is_disabled=disable_preview)
        last_error: Optional[Exception] = None

        for attempt in range(1, _MAX_ATTEMPTS + 1):
            try:
                msg = await self._bot.send_message(
                    chat_id=self.config.chat_id,
                    text=text,
                    parse_mode=ParseMode.HTML,
                    link_preview_options=preview,
                )
            except BadRequest as e:
                if "parse" not in str(e).lower():
                    logger.error("Telegram BadRequest: %s", e)
                    self.circuit_breaker.record_failure(e)
                    return None
                logger.warning("HTML rejected, retrying as plain text: %s", str(e)[:200])
                return await self._send_plain(text, preview)
            except RetryAfter as e:
                last_error = e
                wait = _seconds(e.retry_after)
                logger.warning("Telegram rate limited. Waiting %.0f seconds...", wait)
                await asyncio.sleep(wait)
            except (TimedOut, NetworkError) as e:
                last_error = e
                logger.warning(
                    "Telegram %s (attempt %d/%d): %s",
                    type(e).__name__, attempt, _MAX_ATTEMPTS, e,
                )
                await asyncio.sleep(2 ** (attempt - 1))
            else:
                self.circuit_breaker.record_success()
                self.sent_count += 1
                return str(msg.message_id)

        logger.error("❌ Failed to send Telegram message after %d attempts", _MAX_ATTEMPTS)
        self.circuit_breaker.record_failure(last_error or RuntimeError("send failed"))
        return None

    async def _send_plain(self, text: str, preview: LinkPreviewOptions) -> Optional[str]:
        try:
            msg = await self._bot.send_message(
                chat_id=self.config.chat_id,
                text=strip_html(text),
                link_preview_options=preview,
            )
        except Exception as e:
            logger.error("Plain text fallback also failed: %s", e)
            self.circuit_breaker.record_failure(e)
            return None
        self.circuit_breaker.record_success()
        self.sent_count += 1
        return str(msg.message_id)
