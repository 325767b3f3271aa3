"""Mostaql Hub — Telegram Message Formatters.

Arabic Telegram notifications in HTML parse mode. HTML is far more
reliable than MarkdownV2: only &, < and > need escaping.

Layouts:
  - One new listing: vertical card (title, budget, duration, hiring
    rate, short description, link)
  - Several listings: numbered list of linked titles with budgets
  - Tracked project update, system alert, startup and status messages
"""

from __future__ import annotations

from typing import Any, Sequence

from mostaql_hub.models import UNKNOWN_BUDGET, Listing

# ── Separator line for between sections ──────────────────
_SEP = "━━━━━━━━━━━━━━━━━━"

DESCRIPTION_PREVIEW_CHARS = 300
_MAX_LEN = 4000


def _e(text: Any) -> str:
    """Escape HTML special characters for Telegram."""
    if not text:
        return ""
    return str(text).replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def _link(text: str, url: str) -> str:
    safe_url = url.replace("&", "&amp;").replace('"', "%22")
    return f'<a href="{safe_url}">{_e(text)}</a>'


def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


def format_listing_alert(listing: Listing) -> str:
    """Format a single new listing as a vertical card.

    Args:
        listing: The (possibly enriched) listing.

    Returns:
        HTML message.
    """
    lines = ["<b>🔔 مشروع جديد على مستقل</b>", ""]
    lines.append(f"<b>📌 العنوان:</b> {_e(listing.title or 'مشروع بدون عنوان')}")
    if listing.budget_raw:
        lines.append(f"<b>💰 الميزانية:</b> {_e(listing.budget_raw)}")
    if listing.duration_raw:
        lines.append(f"<b>⏱️ المدة:</b> {_e(listing.duration_raw)}")
    if listing.hiring_rate_raw:
        lines.append(f"<b>✅ معدل التوظيف:</b> {_e(listing.hiring_rate_raw)}")

    if listing.description:
        short = _truncate(listing.description, DESCRIPTION_PREVIEW_CHARS)
        lines.extend(["", "<b>📝 الوصف:</b>", f"<i>{_e(short)}</i>"])

    if listing.url:
        lines.extend(["", f"🔗 {_link('رابط المشروع', listing.url)}"])
    return "\n".join(lines)


def format_listings_batch(listings: Sequence[Listing]) -> str:
    """Format several listings as a numbered list.

    Returns:
        HTML message, truncated to stay under Telegram's limit.
    """
    lines = [f"<b>🔔 {len(listings)} مشاريع جديدة على مستقل</b>", ""]
    for i, listing in enumerate(listings, 1):
        title = listing.title[:60] or listing.id
        title_html = _link(title, listing.url) if listing.url else _e(title)
        budget = listing.budget_raw or UNKNOWN_BUDGET
        lines.append(f"{i}. {title_html} [{_e(budget)}]")

    msg = "\n".join(lines)
    if len(msg) > _MAX_LEN:
        msg = msg[:_MAX_LEN - 50] + "\n..."
    return msg


def format_new_listings(listings: Sequence[Listing]) -> str:
    """Card for one listing, numbered list for more."""
    if not listings:
        return ""
    if len(listings) == 1:
        return format_listing_alert(listings[0])
    return format_listings_batch(listings)


def format_tracked_update(title: str, url: str, changes: Sequence[str]) -> str:
    """Format a status/communications change on a tracked project."""
    lines = ["<b>🔄 تحديث على مشروع متابَع</b>", ""]
    lines.append(f"<b>📌</b> {_link(title or url, url) if url else _e(title)}")
    lines.append("")
    lines.extend(_e(change) for change in changes)
    return "\n".join(lines)


def format_system_alert(message: str) -> str:
    return f"<b>⚠️ تنبيه النظام</b>\n\n{_e(message)}"


def format_startup_message(info: dict[str, Any]) -> str:
    """Format the message sent when the service starts."""
    mode = info.get("mode", "")
    categories = info.get("categories", [])
    interval = info.get("interval_seconds", 60)

    lines = [
        "<b>🚀 بدأ مراقب مستقل</b>",
        "",
        f"⚙️ الوضع: <b>{_e(mode)}</b>",
        f"📂 الأقسام: {_e('، '.join(categories)) or '—'}",
        f"⏱ الفحص كل: <b>{interval}</b> ثانية",
    ]
    quiet = info.get("quiet_hours")
    if quiet:
        lines.append(f"🌙 ساعات الهدوء: {_e(quiet)}")
    return "\n".join(lines)


def format_system_status(status: dict[str, Any]) -> str:
    """Format a system status summary.

    Args:
        status: Dict with uptime, last_check, today_count, errors, subscribers.

    Returns:
        HTML formatted status message.
    """
    errors = status.get("errors", 0)
    if isinstance(errors, dict):
        errors = sum(errors.values())
    lines = [
        "<b>🤖 حالة النظام</b>",
        "",
        f"⏱ وقت التشغيل: {_e(status.get('uptime', 'غير معروف'))}",
        f"🔍 آخر فحص: {_e(status.get('last_check') or 'لم يتم بعد')}",
        f"📌 مشاريع اليوم: <b>{status.get('today_count', 0)}</b>",
        f"👥 المشتركون: <b>{status.get('subscribers', 0)}</b>",
        _SEP,
        f"❌ أخطاء: {errors}" if errors else "✅ لا توجد أخطاء",
    ]
    return "\n".join(lines)


def format_shutdown_message(uptime: str) -> str:
    return f"<b>🔴 تم إيقاف مراقب مستقل</b>\n\n⏱ مدة التشغيل: {_e(uptime)}"
