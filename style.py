"""
style.py — visual style for the Telegram front end.

Design language:
  • Structured cards with consistent emoji icons
  • Unicode box-drawing dividers
  • Clear visual hierarchy: header → body → footer
  • MarkdownV2 throughout

All text that goes into Telegram messages should be formatted through this module.
"""
from __future__ import annotations

from datetime import datetime, timezone

from outcomes import Failure, Notice, Success

# ── Escape ────────────────────────────────────────────────────────────────────

def esc(text: str) -> str:
    """Escape all MarkdownV2 special characters."""
    for ch in r"\_*[]()~`>#+-=|{}.!":
        text = text.replace(ch, f"\\{ch}")
    return text


# ── Visual constants ──────────────────────────────────────────────────────────

DIV   = "━━━━━━━━━━━━━━━━━━━━━━━━━━"    # thick divider
SDIV  = "┄┄┄┄┄┄┄┄┄┄┄┄┄┄┄┄┄┄┄┄┄┄┄┄┄┄"    # subtle divider

MAX_MESSAGE = 4050          # Telegram caps messages at 4096 chars
MAX_SOURCES = 5


_ELLIPSIS = "\\.\\.\\."


def _closed(line: str) -> bool:
    """True if no escape, bold, italic or link is left open at the end of line."""
    counts = dict.fromkeys("*_[]()", 0)
    escaped = False
    for ch in line:
        if escaped:
            escaped = False
        elif ch == "\\":
            escaped = True
        elif ch in counts:
            counts[ch] += 1
    return (
        not escaped
        and counts["*"] % 2 == 0
        and counts["_"] % 2 == 0
        and counts["["] == counts["]"]
        and counts["("] == counts[")"]
    )


def _truncate(text: str, limit: int = MAX_MESSAGE) -> str:
    """
    Cut text to at most `limit` chars, ending in an ellipsis.
    Whole lines are kept; the last, partial line only if it still parses.
    """
    if len(text) <= limit:
        return text
    head, newline, tail = text[:limit - len(_ELLIPSIS)].rpartition("\n")
    if tail.endswith("\\") and not _closed(tail):
        tail = tail[:-1]
    if not _closed(tail):
        tail = ""
    return head + newline + tail + _ELLIPSIS


def fmt_timestamp(epoch_ms: int) -> str:
    dt = datetime.fromtimestamp(epoch_ms / 1000, tz=timezone.utc)
    return dt.strftime("%Y-%m-%d %H:%M UTC")


def known_price(value: str) -> bool:
    return bool(value) and value.strip().lower() != "unknown"


# ══════════════════════════════════════════════════════════════════════════════
# START / HELP
# ══════════════════════════════════════════════════════════════════════════════

def welcome() -> str:
    return (
        f"🏷️ *RESELL LENS*\n"
        f"{DIV}\n\n"
        f"Scan\\. Identify\\. *Resell\\.*\n\n"
        f"✨  *What I can do*\n"
        f"▸ Recognise an item from a photo with AI\n"
        f"▸ Estimate its price new and used\n"
        f"▸ Show the web sources behind the estimate\n"
        f"▸ Keep a history of the items you save\n\n"
        f"{DIV}\n"
        f"_📸 Just send a photo to get started_"
    )


def help_text() -> str:
    return (
        f"📖 *HOW TO USE*\n"
        f"{DIV}\n\n"
        f"*1️⃣  Send a photo*\n"
        f"_One item, well\\-lit, label visible_\n\n"
        f"*2️⃣  AI identifies the item*\n"
        f"_Name, description, new and resale prices_\n\n"
        f"*3️⃣  Save it*\n"
        f"_Tap 💾 to keep it in your history_\n\n"
        f"{DIV}\n"
        f"_Commands: /start · /help · /history · /delete N · /clear\\_history_"
    )


def loading_analysis() -> str:
    return (
        f"🔍 *Analysing your photo*\n"
        f"{SDIV}\n"
        f"⠋ Sending image to the analysis server…"
    )


def not_a_photo() -> str:
    return (
        f"📸 *Send a Photo*\n"
        f"{SDIV}\n"
        f"I need a photo of the item to analyse it\\.\n"
        f"_Just take a pic and send it here\\!_"
    )


# ══════════════════════════════════════════════════════════════════════════════
# ANALYSIS OUTCOMES
# ══════════════════════════════════════════════════════════════════════════════

def result_card(result: Success) -> str:
    lines = [
        f"💡 *{esc(result.product_name or 'Unnamed Product')}*",
        "_Best identified match_",
        DIV,
        "",
    ]
    if result.description:
        lines += ["✦ *Item Description*", esc(result.description), ""]

    if known_price(result.average_sale_price) or known_price(result.resell_price):
        lines.append("💰 *Pricing Information*")
        if known_price(result.average_sale_price):
            lines.append(f"▸ New / like\\-new: *{esc(result.average_sale_price)}*")
        if known_price(result.resell_price):
            lines.append(f"▸ Used resale: *{esc(result.resell_price)}*")
        lines.append("")

    if result.sources:
        lines.append("🌐 *Sources*")
        for src in result.sources[:MAX_SOURCES]:
            label = esc(src.title or src.uri)
            lines.append(f"▸ [{label}]({src.uri.replace(')', '%29')})")
        if len(result.sources) > MAX_SOURCES:
            lines.append(f"_\\+{len(result.sources) - MAX_SOURCES} more_")
        lines.append("")

    lines.append(SDIV)
    return _truncate("\n".join(lines))


def notice_card(notice: Notice) -> str:
    return (
        f"ℹ️ *Notice*\n"
        f"{SDIV}\n"
        f"{esc(notice.message)}"
    )


def failure_card(failure: Failure) -> str:
    return _truncate(
        f"❌ *Analysis Failed*\n"
        f"{DIV}\n\n"
        f"{esc(failure.message)}\n\n"
        f"Try:\n"
        f"▸ Better lighting\n"
        f"▸ Less angle / closer shot\n"
        f"▸ Include the product label\n"
    )


def outcome_card(outcome) -> str:
    if isinstance(outcome, Success):
        return result_card(outcome)
    if isinstance(outcome, Notice):
        return notice_card(outcome)
    return failure_card(outcome)


def input_error(message: str) -> str:
    return (
        f"⚠️ *Couldn't use that image*\n"
        f"{SDIV}\n"
        f"{esc(message)}"
    )


# ══════════════════════════════════════════════════════════════════════════════
# HISTORY
# ══════════════════════════════════════════════════════════════════════════════

def save_ok() -> str:
    return "💾 *Results saved successfully\\!*"


def save_failed(message: str) -> str:
    return f"⚠️ *Failed to save results:* {esc(message)}\\. _Please try again\\._"


def history_page(entries: list) -> str:
    if not entries:
        return (
            f"🗂️ *HISTORY*\n"
            f"{DIV}\n\n"
            f"_No saved analysis results found\\. Save your first result to see it here\\!_"
        )
    cards = []
    for i, e in enumerate(entries, 1):
        prices = []
        if known_price(e.average_sale_price):
            prices.append(f"new {esc(e.average_sale_price)}")
        if known_price(e.resell_price):
            prices.append(f"used {esc(e.resell_price)}")
        price_line = f"\n💰 {' · '.join(prices)}" if prices else ""
        cards.append(
            f"*{i}\\.*  {esc(e.product_name)}\n"
            f"_Saved {esc(fmt_timestamp(e.timestamp))}_"
            f"{price_line}"
        )

    # Whole cards only; room is kept for a "+N more" line
    page = f"🗂️ *HISTORY*  \\({len(entries)}\\)\n{DIV}\n\n"
    reserve = len(f"\n{SDIV}\n_\\+{len(cards)} more_")
    shown = 0
    for card in cards:
        piece = f"\n{SDIV}\n{card}" if shown else card
        room = MAX_MESSAGE - len(page) - reserve
        if len(piece) > room:
            if not shown:
                page += _truncate(piece, room)
                shown = 1
            break
        page += piece
        shown += 1
    if shown < len(cards):
        page += f"\n{SDIV}\n_\\+{len(cards) - shown} more_"
    return page


def delete_usage() -> str:
    return (
        f"🗑️ *Delete an entry*\n"
        f"{SDIV}\n"
        f"Send `/delete N` with the number shown in /history\\."
    )


def delete_missing(number: int) -> str:
    return f"⚠️ There is no history entry *{number}*\\. _Check /history for the numbers\\._"


def entry_deleted(product_name: str) -> str:
    return f"🗑️ Deleted *{esc(product_name)}* from your history\\."


def history_cleared(count: int) -> str:
    noun = "entry" if count == 1 else "entries"
    return f"🧹 Removed *{count}* history {noun}\\."


def storage_failed(message: str) -> str:
    return f"⚠️ *History unavailable:* {esc(message)}"
