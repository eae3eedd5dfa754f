import logging
from typing import Callable

from conversation_buffer import ConversationBuffer, should_store
from orchestrator import Orchestrator
from slack_blocks import analysis_blocks, outcome_text
from slack_history import HistoryError, InvalidTimeFormat

COMMAND = "/chitchatposts"
DEFAULT_HISTORY_WINDOW = "4h"

USAGE = (
    "*Usage:*\n"
    f"`{COMMAND} analyze` - analyze the recent real-time conversation\n"
    f"`{COMMAND} history [1h|4h|1d]` - analyze past messages (default {DEFAULT_HISTORY_WINDOW})\n"
    f"`{COMMAND} sync` - analyze everything since the last sync\n"
    f"`{COMMAND} status` - show what the bot is holding for this channel"
)


def record_message(buffer: ConversationBuffer, event: dict) -> bool:
    """Buffer a live message event if it passes the admission filter."""
    if not should_store(event):
        return False
    channel_id = event.get("channel")
    if not channel_id:
        return False

    buffer.add(channel_id, event.get("user", "unknown"), event.get("text") or "", event.get("ts", ""))
    return True


def status_text(orchestrator: Orchestrator, channel_id: str) -> str:
    msgs = orchestrator.buffer.get(channel_id)
    stats = orchestrator.store.stats()
    last_sync = orchestrator.store.get_checkpoint("sync", channel_id) or "never"
    last_analyzed = orchestrator.store.get_checkpoint("analyzed", channel_id) or "never"
    return (
        "*ChitChatPosts status*\n"
        f"- Buffered messages here: {len(msgs)} (need {orchestrator.min_messages} to analyze)\n"
        f"- Suggestions remembered: {stats['suggestions_count']}\n"
        f"- Last sync checkpoint: {last_sync}\n"
        f"- Last scheduled analysis checkpoint: {last_analyzed}"
    )


def handle_command(orchestrator: Orchestrator, analyzer, command: dict, respond: Callable, logger=None) -> None:
    """
    Dispatch /chitchatposts subcommands. The caller is expected to have acked already.
    """
    log = logger or logging.getLogger(__name__)
    channel_id = command.get("channel_id")
    parts = (command.get("text") or "").strip().split()
    sub = parts[0].lower() if parts else ""

    if sub == "status":
        respond(text=status_text(orchestrator, channel_id), response_type="ephemeral")
        return

    if sub not in ("analyze", "history", "sync"):
        respond(text=USAGE, response_type="ephemeral")
        return

    if not analyzer.is_configured():
        respond(
            text=f"⚠️ LLM not configured. Please set {'CLAUDE_API_KEY' if analyzer.provider == 'claude' else 'OPENAI_API_KEY'} in your environment.",
            response_type="ephemeral",
        )
        return

    respond(text="🔍 Analyzing conversation...", response_type="ephemeral")

    try:
        if sub == "analyze":
            outcome = orchestrator.analyze_buffer(channel_id)
        elif sub == "history":
            token = parts[1] if len(parts) > 1 else DEFAULT_HISTORY_WINDOW
            outcome = orchestrator.analyze_history(channel_id, token)
        else:
            outcome = orchestrator.sync(channel_id)
    except (InvalidTimeFormat, HistoryError) as e:
        respond(text=f"⚠️ {e}", response_type="ephemeral", replace_original=True)
        return
    except Exception:
        log.exception("[command] error during %s in %s", sub, channel_id)
        respond(
            text="⚠️ Something went wrong during analysis. Please try again later.",
            response_type="ephemeral",
            replace_original=True,
        )
        return

    respond(
        text=outcome_text(outcome),
        blocks=analysis_blocks(outcome, analyzer.provider),
        response_type="ephemeral",
        replace_original=True,
    )


def register_handlers(app, buffer: ConversationBuffer, orchestrator: Orchestrator, analyzer) -> None:
    #---- Slack Event Handlers ---

    @app.event("message")
    def handle_message_events(body, logger):
        event = body.get("event", {})
        if record_message(buffer, event):
            logger.debug("[message] buffered %s in %s", event.get("ts"), event.get("channel"))

    @app.command(COMMAND)
    def handle_chitchatposts(ack, command, respond, logger):
        # acknowledge within Slack's 3s window, the analysis can take longer
        ack()
        handle_command(orchestrator, analyzer, command, respond, logger)

    logging.getLogger(__name__).info("[handlers] Slack handlers registered")
