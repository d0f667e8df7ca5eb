#!/usr/bin/env python3
"""
vidRelay - Telegram bot that downloads videos from YouTube, Facebook,
LinkedIn and TikTok, and relays videos shared with its Instagram account.

Runs the Telegram polling loop, an HTTP health/relay server and the
Instagram inbox poller in one asyncio process.
"""

import asyncio
import logging
from typing import Optional

from aiohttp import web
from telegram import Update
from telegram.ext import (
    Application,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

import config
from handlers.link_account_handler import STORE_KEY, connect_instagram_command
from instagram_relay import InstagramRelay, build_client
from pipeline import MessagePipeline, load_handlers_from_env
from user_store import UserStore
from video_pipeline.choices import PendingChoiceTable
from video_pipeline.cookies import CookiePool
from video_pipeline.delivery import TelegramChannel
from video_pipeline.downloader import Fetcher
from video_pipeline.handler import ORCHESTRATOR_KEY, handle_choice_callback
from video_pipeline.merger import Merger
from video_pipeline.negotiator import FormatNegotiator
from video_pipeline.orchestrator import SessionOrchestrator
from video_pipeline.router import ServiceRouter
from video_pipeline.services import load_services_from_env

LOG_LEVEL_MAP = {
    'DEBUG': logging.DEBUG,
    'INFO': logging.INFO,
    'WARNING': logging.WARNING,
    'ERROR': logging.ERROR,
    'CRITICAL': logging.CRITICAL
}
logging.basicConfig(
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    level=LOG_LEVEL_MAP.get(config.LOG_LEVEL, logging.WARNING)
)
logger = logging.getLogger(__name__)

# Suppress verbose logging from external libraries
logging.getLogger('httpx').setLevel(logging.WARNING)
logging.getLogger('httpcore').setLevel(logging.WARNING)
logging.getLogger('telegram').setLevel(logging.WARNING)
logging.getLogger('telegram.ext').setLevel(logging.WARNING)

# Set up in run_all(), shared with the HTTP server
orchestrator: Optional[SessionOrchestrator] = None
store: Optional[UserStore] = None
pipeline: Optional[MessagePipeline] = None

START_MESSAGE = (
    "👋 Welcome! Send me a YouTube, Facebook, LinkedIn or TikTok link and "
    "I'll download the video for you.\n\n"
    "Use /connect_instagram to link your Instagram account and receive "
    "videos you share with us there."
)


def build_orchestrator(application: Application, user_store: UserStore) -> SessionOrchestrator:
    """Wire the download pipeline components for a Telegram application."""
    cookie_pool = CookiePool(config.YTDLP_COOKIE_FILES)
    router = ServiceRouter(load_services_from_env(cookie_pool))
    negotiator = FormatNegotiator(PendingChoiceTable(ttl=config.CHOICE_TTL))
    merger = Merger(
        ffmpeg_bin=config.FFMPEG_BIN,
        audio_bitrate=config.MERGE_AUDIO_BITRATE,
        preset=config.MERGE_PRESET,
        timeout=config.MERGE_TIMEOUT,
    )
    return SessionOrchestrator(
        router=router,
        negotiator=negotiator,
        fetcher=Fetcher(max_size=config.MAX_FILE_SIZE),
        merger=merger,
        channel=TelegramChannel(application.bot),
        store=user_store,
        download_dir=config.DOWNLOAD_DIR,
        pipeline_timeout=config.PIPELINE_TIMEOUT,
        progress_interval=config.PROGRESS_INTERVAL,
    )


async def start_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Greet the user and make sure they have a record."""
    message = update.message
    if not message or not message.from_user:
        return
    context.bot_data[STORE_KEY].ensure_user(message.from_user.id)
    logger.info(f"[HANDLER] /start from user {message.from_user.id}")
    await message.reply_text(START_MESSAGE)


async def handle_message(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Run incoming text messages through the handler pipeline."""
    if not update.message or not update.message.text:
        return
    await pipeline.run(update, context)


async def error_handler(update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
    logger.error(f"[HANDLER] ✗ Unhandled error: {type(context.error).__name__}: {context.error}", exc_info=context.error)


def create_http_app() -> web.Application:
    """
    HTTP endpoints for deployment platforms and external relays.

    Endpoints:
        GET /          : Returns 200 OK with bot status
        GET /health    : Returns 200 OK with detailed health info
        POST /instagram: {"userId": <telegram id>, "videoUrl": <direct url>}
                         fetches the video and delivers it to that chat
    """

    async def handle_root(request):
        return web.Response(
            text="vidRelay Bot is running!\nTelegram video downloader bot is active.",
            status=200
        )

    async def handle_health(request):
        health_data = {
            "status": "healthy",
            "service": "vidrelay-bot",
            "services_loaded": len(orchestrator.router.services) if orchestrator else 0,
            "services": orchestrator.router.get_services() if orchestrator else [],
            "pending_choices": len(orchestrator.table) if orchestrator else 0,
        }
        if store is not None:
            health_data.update(store.get_stats())
        return web.json_response(health_data, status=200)

    async def handle_instagram(request):
        try:
            payload = await request.json()
            user_id = int(payload["userId"])
            video_url = str(payload["videoUrl"])
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"[HTTP] Bad /instagram payload: {e}")
            return web.json_response({"error": "userId and videoUrl are required"}, status=400)

        if orchestrator is None:
            return web.json_response({"error": "bot not ready"}, status=503)

        logger.info(f"[HTTP] /instagram delivery request for user {user_id}")
        delivered = await orchestrator.deliver_remote(user_id, video_url, "Here's your Instagram video!")
        if not delivered:
            return web.json_response({"status": "failed"}, status=502)
        return web.json_response({"status": "delivered"}, status=200)

    app = web.Application()
    app.router.add_get('/', handle_root)
    app.router.add_get('/health', handle_health)
    app.router.add_post('/instagram', handle_instagram)
    return app


async def http_server() -> None:
    """Serve the HTTP endpoints until cancelled."""
    logger.info("[HEALTH] Starting HTTP server...")
    runner = web.AppRunner(create_http_app())
    await runner.setup()
    site = web.TCPSite(runner, '0.0.0.0', config.PORT)
    await site.start()
    logger.info(f"[HEALTH] ✓ HTTP server started on http://0.0.0.0:{config.PORT}")

    try:
        await asyncio.Event().wait()
    finally:
        logger.info("[HEALTH] HTTP server shutting down...")
        await runner.cleanup()


async def instagram_relay_loop() -> None:
    """Poll the Instagram inbox until cancelled."""
    client = await asyncio.to_thread(build_client, config.INSTAGRAM_SESSION_FILE)
    relay = InstagramRelay(
        client,
        store,
        orchestrator,
        bot_username=config.BOT_USERNAME,
        session_file=config.INSTAGRAM_SESSION_FILE,
    )
    logger.info(f"[RELAY] Polling Instagram inbox every {config.INSTAGRAM_POLL_INTERVAL:.0f}s")
    await relay.run(config.INSTAGRAM_USERNAME, config.INSTAGRAM_PASSWORD, config.INSTAGRAM_POLL_INTERVAL)


async def run_bot(application: Application) -> None:
    """Poll Telegram for updates until cancelled."""
    await application.initialize()
    await application.start()
    await application.updater.start_polling(allowed_updates=Update.ALL_TYPES)
    logger.info("Bot started! Send video URLs (YouTube, Facebook, LinkedIn, TikTok) in Telegram.")

    try:
        await asyncio.Event().wait()
    finally:
        logger.info("Bot shutting down...")
        await application.updater.stop()
        await application.stop()
        await application.shutdown()


async def run_all() -> None:
    """Start every long-running task; stopping one stops them all."""
    global orchestrator, store, pipeline

    config.validate_config()
    logger.info("Starting vidRelay bot...")

    store = UserStore(config.DATABASE_PATH)
    application = (
        Application.builder()
        .token(config.TELEGRAM_BOT_TOKEN)
        .concurrent_updates(True)
        .build()
    )
    orchestrator = build_orchestrator(application, store)
    application.bot_data[ORCHESTRATOR_KEY] = orchestrator
    application.bot_data[STORE_KEY] = store

    pipeline = MessagePipeline()
    for handler in load_handlers_from_env("handlers"):
        pipeline.add_handler(handler)

    application.add_handler(CommandHandler('start', start_command))
    application.add_handler(CommandHandler('connect_instagram', connect_instagram_command))
    application.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, handle_message))
    application.add_handler(CallbackQueryHandler(handle_choice_callback))
    application.add_error_handler(error_handler)

    tasks = [
        asyncio.create_task(run_bot(application)),
        asyncio.create_task(orchestrator.run_expiry_loop(min(60.0, config.CHOICE_TTL))),
    ]

    if config.ENABLE_HEALTH_CHECK:
        logger.info("[MAIN] HTTP server enabled")
        tasks.append(asyncio.create_task(http_server()))
    else:
        logger.info("[MAIN] HTTP server disabled (set ENABLE_HEALTH_CHECK=true to enable)")

    if config.INSTAGRAM_USERNAME and config.INSTAGRAM_PASSWORD:
        tasks.append(asyncio.create_task(instagram_relay_loop()))
    else:
        logger.info("[MAIN] Instagram relay disabled (INSTAGRAM_USERNAME/INSTAGRAM_PASSWORD not set)")

    try:
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        for task in done:
            if task.exception():
                logger.error(f"[MAIN] Task failed: {task.exception()!r}")
    finally:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        store.close()
        logger.info("[MAIN] Shutdown complete")


def main() -> None:
    try:
        asyncio.run(run_all())
    except KeyboardInterrupt:
        logger.info("Received exit signal, shutting down...")


if __name__ == '__main__':
    main()
