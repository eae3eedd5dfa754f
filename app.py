import logging
import sys
import time

from slack_bolt import App
from slack_bolt.adapter.socket_mode import SocketModeHandler

from conversation_buffer import ConversationBuffer
from dedup import DuplicateDetector
from health import create_health_app, serve_in_background
from jobs import start_scheduler
from orchestrator import Orchestrator
from post_analyzer import PostAnalyzer
from settings import ConfigError, Settings
from slack_handlers import register_handlers
from slack_history import HistoryFetcher
from suggestion_store import SuggestionStore

logger = logging.getLogger("chitchatposts")


def build_bot(settings: Settings, client=None):
    """
    Wire the shared state once. Buffer + store are the only mutable state in the
    process and everything else borrows them.
    NOTE: resets on restart/deploy.
    """
    # -- Slack App --
    kwargs = {"token": settings.slack_bot_token}
    if settings.slack_signing_secret:
        kwargs["signing_secret"] = settings.slack_signing_secret
    if client is not None:
        kwargs["client"] = client
    app = App(**kwargs)

    buffer = ConversationBuffer(window_hours=settings.buffer_window_hours)
    store = SuggestionStore(max_history=settings.suggestion_history_size)
    detector = DuplicateDetector(store, threshold=settings.duplicate_similarity_threshold)
    analyzer = PostAnalyzer.from_settings(settings)
    orchestrator = Orchestrator(
        buffer,
        store,
        detector,
        analyzer,
        fetcher=HistoryFetcher(app.client),
        min_messages=settings.min_messages_for_analysis,
        sync_default_lookback=settings.sync_default_lookback,
    )

    register_handlers(app, buffer, orchestrator, analyzer)
    return app, orchestrator


def main() -> int:
    try:
        settings = Settings.from_env()
    except ConfigError as e:
        logging.basicConfig(level=logging.INFO)
        logger.error("%s. Copy .env.example to .env and fill in your credentials.", e)
        return 1

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )

    app, orchestrator = build_bot(settings)

    serve_in_background(create_health_app(started_at=time.time(), env=settings.app_env), settings.port)
    start_scheduler(orchestrator, settings, app.client)

    analyzer = orchestrator.analyzer
    if not analyzer.is_configured():
        logger.warning("LLM not configured, set %s to enable analysis", settings.llm_key_name)
    logger.info(
        "ChitChatPosts running (socket mode). LLM: %s/%s configured=%s, cron=%s",
        analyzer.provider,
        analyzer.model,
        analyzer.is_configured(),
        settings.cron_enabled,
    )
    SocketModeHandler(app, settings.slack_app_token).start()
    return 0


# --- Start the app ---
if __name__ == "__main__":
    sys.exit(main())
