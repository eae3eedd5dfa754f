import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Mapping

logger = logging.getLogger(__name__)

MIN_MESSAGE_LENGTH = 5

# Subtypes that are edits/deletes of an existing message, not new content.
IGNORED_SUBTYPES = {"bot_message", "message_changed", "message_deleted"}


@dataclass
class Message:
    user: str
    text: str
    timestamp: str  # Slack ts, the ordering key
    added_at: float  # local ingestion time (epoch seconds), only used for expiry


def should_store(event: Mapping) -> bool:
    """
    Admission filter shared by the live listener and the history fetcher.
    """
    # ignore bot messages + edits/deletes
    if event.get("bot_id") or event.get("subtype") in IGNORED_SUBTYPES:
        return False

    text = (event.get("text") or "").strip()
    return len(text) >= MIN_MESSAGE_LENGTH


class ConversationBuffer:
    """
    Rolling per-channel window of recent messages.

    Expiry is lazy: every add/get sweeps the touched channel, and a channel that
    ends up empty is dropped from the mapping entirely.
    NOTE: in-memory only, resets on restart/deploy.
    """

    def __init__(self, window_hours: float = 4, clock: Callable[[], float] = time.time) -> None:
        self.window_seconds = window_hours * 60 * 60
        self._clock = clock
        self._channels: Dict[str, List[Message]] = {}
        # Bolt listeners and scheduler jobs touch the buffer from different threads
        self._lock = threading.Lock()

    def _sweep(self, channel_id: str) -> None:
        # caller holds self._lock
        msgs = self._channels.get(channel_id)
        if msgs is None:
            return

        cutoff = self._clock() - self.window_seconds
        kept = [m for m in msgs if m.added_at > cutoff]
        if kept:
            self._channels[channel_id] = kept
        else:
            self._channels.pop(channel_id, None)

    def add(self, channel_id: str, user: str, text: str, timestamp: str) -> None:
        # callers are expected to have run should_store() already
        with self._lock:
            self._sweep(channel_id)
            self._channels.setdefault(channel_id, []).append(
                Message(user=user, text=text, timestamp=timestamp, added_at=self._clock())
            )
        logger.debug("[buffer] added message from %s in %s: %r", user, channel_id, text[:50])

    def get(self, channel_id: str) -> List[Message]:
        with self._lock:
            self._sweep(channel_id)
            return self._channels.get(channel_id, [])

    def clear(self, channel_id: str) -> None:
        with self._lock:
            self._channels.pop(channel_id, None)
        logger.info("[buffer] cleared channel %s", channel_id)

    def __contains__(self, channel_id: str) -> bool:
        return channel_id in self._channels

    def stats(self) -> Dict[str, object]:
        channels = {}
        with self._lock:
            snapshot = list(self._channels.items())
        for channel_id, msgs in snapshot:
            channels[channel_id] = {
                "message_count": len(msgs),
                "oldest_added_at": msgs[0].added_at,
                "newest_added_at": msgs[-1].added_at,
            }
        return {"total_channels": len(snapshot), "channels": channels}
