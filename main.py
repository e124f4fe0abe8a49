"""
main.py — Single entry point.

Runs the analysis endpoint and, when TELEGRAM_BOT_TOKEN is set, the
Telegram front end in the same asyncio event loop — no threads, no
subprocesses.

Architecture:
  asyncio event loop
    ├── aiohttp web server  (POST /analyzeImage → Gemini)
    └── python-telegram-bot (polling)
         Only started when TELEGRAM_BOT_TOKEN is set.
"""
import asyncio
import logging
import os
import signal
import sys
from pathlib import Path

import config

# Log file lives in the same data/ directory as the database so that a single
# Docker volume mount (./data:/app/data) captures both.
_data_dir = Path(os.getenv("DATA_DIR", "data"))
_data_dir.mkdir(parents=True, exist_ok=True)

logging.basicConfig(
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    level=logging.INFO,
    handlers=[
        logging.StreamHandler(sys.stdout),
        logging.FileHandler(str(_data_dir / "resell_lens.log"), encoding="utf-8"),
    ],
)
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("aiohttp.access").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


async def run() -> None:
    # ── History database bootstrap ────────────────────────────────────────────
    import result_store
    try:
        await result_store.init_db()
    except Exception as exc:
        logger.critical("FATAL: database init failed: %s", exc, exc_info=True)
        raise

    # ── Analysis endpoint ─────────────────────────────────────────────────────
    from analysis_server import start_server
    web_runner = await start_server()

    stop_event = asyncio.Event()

    def _stop(*_):
        logger.info("Shutdown signal received.")
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _stop)
        except (NotImplementedError, RuntimeError):
            # Windows doesn't support add_signal_handler for all signals
            pass

    # ── Telegram front end (optional) ─────────────────────────────────────────
    ptb_app = None
    if config.TELEGRAM_BOT_TOKEN:
        from bot import build_application
        ptb_app = build_application()
        await ptb_app.initialize()
        await ptb_app.start()
        await ptb_app.updater.start_polling(
            allowed_updates=["message", "callback_query"],
            drop_pending_updates=True,
        )
        logger.info("✅ Bot is running.")
    else:
        logger.info("TELEGRAM_BOT_TOKEN not set — serving the analysis endpoint only.")

    logger.info(
        "🔍 Analysis endpoint on http://%s:%d/analyzeImage. Press Ctrl+C to stop.",
        config.ANALYZE_HOST,
        config.ANALYZE_PORT,
    )

    try:
        await stop_event.wait()
    except (KeyboardInterrupt, SystemExit):
        pass

    # Graceful shutdown
    logger.info("Shutting down…")
    if ptb_app is not None:
        await ptb_app.updater.stop()
        await ptb_app.stop()
        await ptb_app.shutdown()

    await web_runner.cleanup()
    logger.info("Analysis endpoint stopped.")
    logger.info("Goodbye.")


def main() -> None:
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
