"""
bot.py — Telegram front end.

Each Telegram user gets a UserSession holding a SessionHolder (signed in as
that user) and a Workspace. Photos go through the same pipeline as any other
front end: FileSource → normalize → AnalysisClient → outcome card.

All visual formatting is delegated to style.py.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from telegram import InlineKeyboardButton, InlineKeyboardMarkup, LinkPreviewOptions, Update
from telegram.ext import (
    Application,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

import config
import result_store
import style
from analysis_client import AnalysisClient
from capture.file_source import FileSource
from errors import StorageError
from outcomes import Success
from session import SessionHolder, User
from workspace import Workspace

logger = logging.getLogger(__name__)

# ── Callback data ──────────────────────────────────────────────────────────────
CB_SAVE = "save:"               # + message_id of the result card

MAX_PENDING_CARDS = 20          # unsaved result cards remembered per user

CARD_GONE = "this result is no longer available, send the photo again"


# ── Session ────────────────────────────────────────────────────────────────────

@dataclass
class UserSession:
    holder: SessionHolder
    workspace: Workspace
    # result card message_id → (result shown on it, its preview image)
    pending: dict[int, tuple[Success, Optional[str]]] = field(default_factory=dict)

    def remember(self, card_id: int, result: Success, preview_uri: Optional[str]) -> None:
        self.pending[card_id] = (result, preview_uri)
        while len(self.pending) > MAX_PENDING_CARDS:
            del self.pending[next(iter(self.pending))]


_sessions: dict[int, UserSession] = {}


def get_session(tg_user) -> UserSession:
    if tg_user.id not in _sessions:
        holder = SessionHolder()
        workspace = Workspace(AnalysisClient(), holder)
        holder.sign_in(User(uid=str(tg_user.id), display_name=tg_user.full_name or ""))
        _sessions[tg_user.id] = UserSession(holder=holder, workspace=workspace)
    return _sessions[tg_user.id]


def save_keyboard(card_id: int) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup([
        [InlineKeyboardButton("💾  Save to history", callback_data=f"{CB_SAVE}{card_id}")],
    ])


def _card_id(data: str) -> Optional[int]:
    data = data or ""
    if not data.startswith(CB_SAVE) or not data[len(CB_SAVE):].isdigit():
        return None
    return int(data[len(CB_SAVE):])


# ── Handlers ───────────────────────────────────────────────────────────────────

async def cmd_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    get_session(update.effective_user)
    await update.message.reply_text(style.welcome(), parse_mode="MarkdownV2")


async def cmd_help(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await update.message.reply_text(style.help_text(), parse_mode="MarkdownV2")


async def handle_photo(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    session   = get_session(update.effective_user)
    workspace = session.workspace

    if workspace.is_analysing:
        await update.message.reply_text(
            "⏳ Still analysing your last photo\\.", parse_mode="MarkdownV2"
        )
        return

    msg = await update.message.reply_text(style.loading_analysis(), parse_mode="MarkdownV2")

    photo      = update.message.photo[-1]
    photo_file = await context.bot.get_file(photo.file_id)
    image_bytes = bytes(await photo_file.download_as_bytearray())

    image = await workspace.select_file(FileSource(data=image_bytes, name=f"{photo.file_unique_id}.jpg"))
    if image is None:
        await msg.edit_text(style.input_error(workspace.input_error or ""), parse_mode="MarkdownV2")
        return

    outcome = await workspace.analyse()
    keyboard = None
    if isinstance(outcome, Success):
        session.remember(msg.message_id, outcome, image.preview_uri)
        keyboard = save_keyboard(msg.message_id)
    await msg.edit_text(
        style.outcome_card(outcome),
        parse_mode="MarkdownV2",
        reply_markup=keyboard,
        link_preview_options=LinkPreviewOptions(is_disabled=True),
    )


async def handle_callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    await query.answer()
    session = get_session(update.effective_user)

    card_id = _card_id(query.data)
    if card_id is None:
        return
    workspace = session.workspace
    if workspace.is_saving:
        return

    pending = session.pending.get(card_id)
    if pending is None:
        await query.message.reply_text(style.save_failed(CARD_GONE), parse_mode="MarkdownV2")
        return
    result, preview_uri = pending
    try:
        await workspace.save(result=result, preview_uri=preview_uri)
    except StorageError as exc:
        logger.error("Error saving results: %s", exc)
        await query.message.reply_text(style.save_failed(str(exc)), parse_mode="MarkdownV2")
        return
    session.pending.pop(card_id, None)
    # Drop the button so the same result is not saved twice
    await query.edit_message_reply_markup(reply_markup=None)
    await query.message.reply_text(style.save_ok(), parse_mode="MarkdownV2")


async def cmd_history(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    session = get_session(update.effective_user)
    try:
        entries = await result_store.list_entries(session.holder.current_user.uid)
    except StorageError as exc:
        await update.message.reply_text(style.storage_failed(str(exc)), parse_mode="MarkdownV2")
        return
    await update.message.reply_text(style.history_page(entries), parse_mode="MarkdownV2")


async def cmd_clear_history(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    session = get_session(update.effective_user)
    try:
        removed = await result_store.clear_all(session.holder.current_user.uid)
    except StorageError as exc:
        await update.message.reply_text(style.storage_failed(str(exc)), parse_mode="MarkdownV2")
        return
    await update.message.reply_text(style.history_cleared(removed), parse_mode="MarkdownV2")


async def cmd_delete(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """/delete <n> removes entry n as numbered by /history."""
    session = get_session(update.effective_user)
    args = context.args or []
    if len(args) != 1 or not args[0].isdigit():
        await update.message.reply_text(style.delete_usage(), parse_mode="MarkdownV2")
        return
    number = int(args[0])

    try:
        entries = await result_store.list_entries(session.holder.current_user.uid)
        entry = entries[number - 1] if 1 <= number <= len(entries) else None
        deleted = entry is not None and await result_store.delete_entry(entry.id)
    except StorageError as exc:
        await update.message.reply_text(style.storage_failed(str(exc)), parse_mode="MarkdownV2")
        return

    if not deleted:
        await update.message.reply_text(style.delete_missing(number), parse_mode="MarkdownV2")
        return
    await update.message.reply_text(style.entry_deleted(entry.product_name), parse_mode="MarkdownV2")


async def handle_non_photo(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await update.message.reply_text(style.not_a_photo(), parse_mode="MarkdownV2")


# ── App factory ────────────────────────────────────────────────────────────────

async def _post_init(application: Application) -> None:
    await result_store.init_db()


async def _post_shutdown(application: Application) -> None:
    for session in _sessions.values():
        await session.workspace.close()
    _sessions.clear()


def build_application() -> Application:
    if not config.TELEGRAM_BOT_TOKEN:
        raise RuntimeError("TELEGRAM_BOT_TOKEN is not set")

    app = (
        Application.builder()
        .token(config.TELEGRAM_BOT_TOKEN)
        .post_init(_post_init)
        .post_shutdown(_post_shutdown)
        .build()
    )
    app.add_handler(CommandHandler("start",         cmd_start))
    app.add_handler(CommandHandler("help",          cmd_help))
    app.add_handler(CommandHandler("history",       cmd_history))
    app.add_handler(CommandHandler("clear_history", cmd_clear_history))
    app.add_handler(CommandHandler("delete",        cmd_delete))
    app.add_handler(MessageHandler(filters.PHOTO,                   handle_photo))
    app.add_handler(CallbackQueryHandler(handle_callback))
    app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, handle_non_photo))
    return app
