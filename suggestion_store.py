import logging
import re
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

CHECKPOINT_KINDS = ("sync", "analyzed")

_NON_WORD = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class Suggestion:
    is_post_worthy: bool
    reasoning: str
    linkedin_draft: Optional[str] = None
    x_draft: Optional[str] = None
    error: bool = False

    @property
    def primary_text(self) -> str:
        return self.linkedin_draft or self.x_draft or ""


@dataclass
class HistoryEntry:
    fingerprint: str
    suggestion: Suggestion
    stored_at: float


def fingerprint(text: Optional[str]) -> str:
    """lowercase, strip punctuation, collapse whitespace"""
    if not text:
        return ""
    t = _NON_WORD.sub("", text.lower())
    return _WHITESPACE.sub(" ", t).strip()


class SuggestionStore:
    """
    Past accepted suggestions (for dedupe) plus per-channel checkpoints.

    History is bounded and evicts in insertion order (dicts keep it), so the
    oldest stored suggestion goes first regardless of how often it matched.
    NOTE: in-memory only, resets on restart/deploy.
    """

    def __init__(self, max_history: int = 100, clock: Callable[[], float] = time.time) -> None:
        self.max_history = max_history
        self._clock = clock
        self._history: Dict[str, HistoryEntry] = {}
        self._checkpoints: Dict[str, Dict[str, str]] = {kind: {} for kind in CHECKPOINT_KINDS}
        # scheduled runs and slash commands for different channels share this store
        self._lock = threading.Lock()

    def store(self, suggestion: Suggestion) -> None:
        fp = fingerprint(suggestion.primary_text)
        if not fp:
            return

        with self._lock:
            # same fingerprint overwrites in place, so it never counts as growth
            if fp not in self._history and len(self._history) >= self.max_history:
                oldest = next(iter(self._history))
                del self._history[oldest]

            self._history[fp] = HistoryEntry(fingerprint=fp, suggestion=suggestion, stored_at=self._clock())
            size = len(self._history)
        logger.info("[store] stored suggestion (%d in history)", size)

    def get(self, fp: str) -> Optional[Suggestion]:
        with self._lock:
            entry = self._history.get(fp)
        return entry.suggestion if entry else None

    def list_all(self) -> List[Suggestion]:
        with self._lock:
            return [entry.suggestion for entry in self._history.values()]

    def clear(self) -> None:
        with self._lock:
            self._history.clear()
        logger.info("[store] cleared all suggestions")

    def __len__(self) -> int:
        return len(self._history)

    # ---- checkpoints ----

    def _namespace(self, kind: str) -> Dict[str, str]:
        if kind not in self._checkpoints:
            raise ValueError(f"unknown checkpoint kind: {kind!r}")
        return self._checkpoints[kind]

    def get_checkpoint(self, kind: str, channel_id: str) -> Optional[str]:
        namespace = self._namespace(kind)
        with self._lock:
            return namespace.get(channel_id)

    def set_checkpoint(self, kind: str, channel_id: str, ts: str) -> None:
        namespace = self._namespace(kind)
        with self._lock:
            namespace[channel_id] = ts
        logger.info("[store] %s checkpoint for %s -> %s", kind, channel_id, ts)

    def checkpoints(self, kind: str) -> Dict[str, str]:
        namespace = self._namespace(kind)
        with self._lock:
            return dict(namespace)

    def stats(self) -> Dict[str, object]:
        return {
            "suggestions_count": len(self._history),
            "sync_channels": self.checkpoints("sync"),
            "analyzed_channels": self.checkpoints("analyzed"),
        }
