import logging
from typing import List, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from slack_sdk.errors import SlackApiError

from orchestrator import Orchestrator
from settings import Settings
from slack_blocks import suggestion_blocks
from suggestion_store import Suggestion

logger = logging.getLogger(__name__)


def member_channel_ids(client, exclude: Optional[str] = None) -> List[str]:
    """Every channel the bot has been invited to."""
    ids: List[str] = []
    cursor = None
    while True:
        kwargs = {"types": "public_channel,private_channel", "exclude_archived": True, "limit": 200}
        if cursor:
            kwargs["cursor"] = cursor
        resp = client.users_conversations(**kwargs)
        for c in resp.get("channels", []) or []:
            if c.get("id") and c["id"] != exclude:
                ids.append(c["id"])
        cursor = (resp.get("response_metadata") or {}).get("next_cursor")
        if not cursor:
            break
    return ids


class SuggestionPoster:
    def __init__(self, client, channel_id: Optional[str]) -> None:
        self.client = client
        self.channel_id = channel_id

    def __call__(self, suggestion: Suggestion, source: str) -> None:
        if not self.channel_id:
            logger.warning("[scheduler] SUGGESTIONS_CHANNEL_ID not configured, skipping post")
            return
        try:
            self.client.chat_postMessage(
                channel=self.channel_id,
                blocks=suggestion_blocks(suggestion, source),
                text="💡 New post suggestion available",
            )
            logger.info("[scheduler] posted suggestion to %s", self.channel_id)
        except SlackApiError as e:
            # already stored + checkpointed; a lost post is preferred over a repeat
            logger.error("[scheduler] failed to post suggestion: %s", e)


class ScheduledAnalysis:
    def __init__(self, orchestrator: Orchestrator, settings: Settings, client) -> None:
        self.orchestrator = orchestrator
        self.settings = settings
        self.client = client
        self.poster = SuggestionPoster(client, settings.suggestions_channel_id)

    def channels(self) -> List[str]:
        if self.settings.monitored_channels:
            return list(self.settings.monitored_channels)
        return member_channel_ids(self.client, exclude=self.settings.suggestions_channel_id)

    def run(self, lookback_hours: float, source: str):
        if not self.orchestrator.analyzer.is_configured():
            logger.warning("[scheduler] LLM not configured, skipping %s", source)
            return {}
        try:
            channels = self.channels()
        except SlackApiError as e:
            logger.error("[scheduler] could not list channels: %s", e)
            return {}
        return self.orchestrator.run_scheduled_analysis(channels, lookback_hours, self.poster, source=source)

    def six_hour_job(self):
        return self.run(6, "6-hour analysis")

    def daily_job(self):
        return self.run(24, "Daily summary")

    def run_now(self, lookback_hours: float = 6):
        """Out-of-schedule run over the last `lookback_hours`, same flow as the cron jobs."""
        return self.run(lookback_hours, f"Manual analysis ({lookback_hours:g}h)")


def start_scheduler(orchestrator: Orchestrator, settings: Settings, client) -> Optional[BackgroundScheduler]:
    if not settings.cron_enabled:
        logger.info("[scheduler] cron jobs disabled (CRON_ENABLED=false)")
        return None
    if not settings.suggestions_channel_id:
        logger.warning("[scheduler] SUGGESTIONS_CHANNEL_ID not set, automated suggestions disabled")
        return None

    jobs = ScheduledAnalysis(orchestrator, settings, client)
    scheduler = BackgroundScheduler(timezone="UTC")

    # every 6 hours: 00:00, 06:00, 12:00, 18:00 UTC
    scheduler.add_job(
        jobs.six_hour_job,
        trigger="cron",
        hour="0,6,12,18",
        minute=0,
        id="six_hour_analysis",
        replace_existing=True,
        max_instances=1,
    )

    # daily summary at midnight UTC
    scheduler.add_job(
        jobs.daily_job,
        trigger="cron",
        hour=0,
        minute=0,
        id="daily_summary",
        replace_existing=True,
        max_instances=1,
    )

    scheduler.start()
    logger.info(
        "[scheduler] cron jobs started, suggestions -> %s, monitored: %s",
        settings.suggestions_channel_id,
        ", ".join(settings.monitored_channels) or "all member channels",
    )
    return scheduler
