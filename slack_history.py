import logging
import re
import time
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Union

from slack_sdk.errors import SlackApiError

from conversation_buffer import Message, should_store

logger = logging.getLogger(__name__)

# fixed page size for conversations.history
HISTORY_PAGE_SIZE = 200

_RELATIVE_TIME = re.compile(r"^(\d+)([hd])$", re.IGNORECASE)


class InvalidTimeFormat(ValueError):
    pass


class HistoryError(Exception):
    """Base for history fetch failures; str(e) is safe to show to a Slack user."""


class ChannelNotFound(HistoryError):
    pass


class NotInChannel(HistoryError):
    pass


class UpstreamError(HistoryError):
    pass


def parse_relative_time(token: str) -> timedelta:
    m = _RELATIVE_TIME.match((token or "").strip())
    if not m:
        raise InvalidTimeFormat("Invalid time format. Use: 1h, 4h, 1d")

    value = int(m.group(1))
    if m.group(2).lower() == "h":
        return timedelta(hours=value)
    return timedelta(days=value)


def _translate(e: SlackApiError) -> HistoryError:
    code = ""
    if e.response is not None:
        code = e.response.get("error") or ""

    if code == "channel_not_found":
        return ChannelNotFound("Channel not found. Make sure the bot is added to this channel.")
    if code == "not_in_channel":
        return NotInChannel("Bot is not in this channel. Invite the bot first with /invite @ChitChatPosts")
    if code == "ratelimited":
        return UpstreamError("Slack is rate limiting requests right now. Please try again later.")
    return UpstreamError(f"Slack API error: {code or e}")


class HistoryFetcher:
    """
    Reads past channel messages through conversations.history and normalizes
    them into the same Message shape the live buffer uses.
    """

    def __init__(self, client, clock: Callable[[], float] = time.time, page_size: int = HISTORY_PAGE_SIZE) -> None:
        self.client = client
        self._clock = clock
        self.page_size = page_size

    def fetch_range(
        self,
        channel_id: str,
        oldest: Union[str, float],
        latest: Optional[Union[str, float]] = None,
    ) -> List[Message]:
        logger.info(
            "[history] fetching %s since %s",
            channel_id,
            datetime.fromtimestamp(float(oldest), tz=timezone.utc).isoformat(),
        )

        messages: List[Message] = []
        cursor = None
        pages = 0
        while True:
            params = {
                "channel": channel_id,
                "oldest": str(oldest),
                "limit": self.page_size,
            }
            if latest is not None:
                params["latest"] = str(latest)
            if cursor:
                params["cursor"] = cursor

            try:
                resp = self.client.conversations_history(**params)
            except SlackApiError as e:
                raise _translate(e) from e
            pages += 1

            for m in resp.get("messages", []) or []:
                if not should_store(m):
                    continue
                messages.append(Message(
                    user=m.get("user", "unknown"),
                    text=m.get("text") or "",
                    timestamp=m["ts"],
                    added_at=float(m["ts"]),
                ))

            cursor = (resp.get("response_metadata") or {}).get("next_cursor")
            if not resp.get("has_more") or not cursor:
                break

        # pages are not guaranteed to be globally chronological; oldest -> newest
        messages.sort(key=lambda msg: float(msg.timestamp))

        logger.info("[history] fetched %d messages from %s (%d pages)", len(messages), channel_id, pages)
        return messages

    def fetch_by_relative_time(self, channel_id: str, token: str) -> List[Message]:
        duration = parse_relative_time(token)
        oldest = int(self._clock() - duration.total_seconds())
        return self.fetch_range(channel_id, oldest)

    def fetch_since(self, channel_id: str, since_ts: str) -> List[Message]:
        # Slack treats `oldest` as exclusive, so the checkpoint message is not re-read
        return self.fetch_range(channel_id, since_ts)
