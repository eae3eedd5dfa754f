import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Union

from conversation_buffer import ConversationBuffer, Message
from dedup import DuplicateCheck, DuplicateDetector
from slack_history import HistoryFetcher
from suggestion_store import Suggestion, SuggestionStore

logger = logging.getLogger(__name__)


# ---- analysis outcomes ----

@dataclass
class NotEnoughMessages:
    needed: int
    have: int


@dataclass
class NotPostWorthy:
    reasoning: str


@dataclass
class AnalysisFailed:
    reasoning: str


@dataclass
class Accepted:
    reasoning: str
    linkedin_draft: Optional[str]
    x_draft: Optional[str]
    duplicate_warning: Optional[DuplicateCheck] = None


@dataclass
class NothingNew:
    channel_id: str
    checkpoint: str


@dataclass
class DuplicateSkipped:
    similarity: float


@dataclass
class AnalysisInProgress:
    channel_id: str


Outcome = Union[
    NotEnoughMessages,
    NotPostWorthy,
    AnalysisFailed,
    Accepted,
    NothingNew,
    DuplicateSkipped,
    AnalysisInProgress,
]


class Orchestrator:
    """
    Ties buffer, history, analyzer, dedupe and store together.

    Owns no data itself; the buffer and store are shared with the Slack
    listeners and the scheduler. Bolt listeners and the APScheduler thread run
    in parallel, so every gather->commit span takes a per-channel single-flight
    lock: a second run for a busy channel is turned away instead of queued.
    """

    def __init__(
        self,
        buffer: ConversationBuffer,
        store: SuggestionStore,
        detector: DuplicateDetector,
        analyzer,
        fetcher: Optional[HistoryFetcher] = None,
        min_messages: int = 5,
        sync_default_lookback: str = "24h",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.buffer = buffer
        self.store = store
        self.detector = detector
        self.analyzer = analyzer
        self.fetcher = fetcher
        self.min_messages = min_messages
        self.sync_default_lookback = sync_default_lookback
        self._clock = clock
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def single_flight(self, channel_id: str) -> Iterator[bool]:
        with self._locks_guard:
            lock = self._locks.setdefault(channel_id, threading.Lock())
        acquired = lock.acquire(blocking=False)
        try:
            yield acquired
        finally:
            if acquired:
                lock.release()

    def run_analysis(
        self,
        messages: Sequence[Message],
        *,
        channel_id: Optional[str] = None,
        checkpoint_kind: Optional[str] = None,
        warn_on_duplicate: bool = True,
    ) -> Outcome:
        """
        Threshold -> analyze -> checkpoint -> content gate -> dedupe -> store.

        With warn_on_duplicate (the on-demand paths) a duplicate still comes
        back as Accepted, with the match attached as duplicate_warning, and is
        not stored again. Without it (scheduled runs) a duplicate comes back as
        DuplicateSkipped.
        """
        if len(messages) < self.min_messages:
            return NotEnoughMessages(needed=self.min_messages, have=len(messages))

        result = self.analyzer.analyze(messages)
        if checkpoint_kind and channel_id:
            # advance even if nothing post-worthy came back, or this window gets re-analyzed forever
            self.store.set_checkpoint(checkpoint_kind, channel_id, messages[-1].timestamp)

        if result.error:
            logger.info("[orchestrator] analysis failed for %s: %s", channel_id, result.reasoning)
            return AnalysisFailed(reasoning=result.reasoning)
        if not result.is_post_worthy:
            logger.info("[orchestrator] no post-worthy content in %s", channel_id)
            return NotPostWorthy(reasoning=result.reasoning)

        check = self.detector.check(result)
        if check.is_duplicate:
            logger.info("[orchestrator] result is %.1f%% similar to a past suggestion", check.similarity * 100)
            if not warn_on_duplicate:
                return DuplicateSkipped(similarity=check.similarity)
        else:
            self.store.store(result)

        return Accepted(
            reasoning=result.reasoning,
            linkedin_draft=result.linkedin_draft,
            x_draft=result.x_draft,
            duplicate_warning=check if check.is_duplicate else None,
        )

    # ---- on-demand entry points ----

    def analyze_buffer(self, channel_id: str) -> Outcome:
        with self.single_flight(channel_id) as ok:
            if not ok:
                return AnalysisInProgress(channel_id)
            messages = list(self.buffer.get(channel_id))
            return self.run_analysis(messages, channel_id=channel_id)

    def analyze_history(self, channel_id: str, token: str) -> Outcome:
        with self.single_flight(channel_id) as ok:
            if not ok:
                return AnalysisInProgress(channel_id)
            messages = self.fetcher.fetch_by_relative_time(channel_id, token)
            return self.run_analysis(messages, channel_id=channel_id)

    def sync(self, channel_id: str) -> Outcome:
        with self.single_flight(channel_id) as ok:
            if not ok:
                return AnalysisInProgress(channel_id)
            since = self.store.get_checkpoint("sync", channel_id)
            if since:
                messages = self.fetcher.fetch_since(channel_id, since)
            else:
                messages = self.fetcher.fetch_by_relative_time(channel_id, self.sync_default_lookback)
            return self.run_analysis(messages, channel_id=channel_id, checkpoint_kind="sync")

    # ---- scheduled ----

    def _scheduled_channel(
        self,
        channel_id: str,
        oldest: int,
        source: str,
        deliver: Callable[[Suggestion, str], None],
    ) -> Outcome:
        messages = self.fetcher.fetch_range(channel_id, oldest)
        if len(messages) < self.min_messages:
            logger.info("[scheduler] not enough messages in %s (%d/%d)", channel_id, len(messages), self.min_messages)
            return NotEnoughMessages(needed=self.min_messages, have=len(messages))

        newest = messages[-1].timestamp
        last = self.store.get_checkpoint("analyzed", channel_id)
        if last and float(newest) <= float(last):
            logger.info("[scheduler] skipping %s, no new messages since last analysis", channel_id)
            return NothingNew(channel_id=channel_id, checkpoint=last)

        outcome = self.run_analysis(
            messages,
            channel_id=channel_id,
            checkpoint_kind="analyzed",
            warn_on_duplicate=False,
        )
        if isinstance(outcome, Accepted):
            deliver(
                Suggestion(
                    is_post_worthy=True,
                    reasoning=outcome.reasoning,
                    linkedin_draft=outcome.linkedin_draft,
                    x_draft=outcome.x_draft,
                ),
                source,
            )
        return outcome

    def run_scheduled_analysis(
        self,
        channel_ids: Iterable[str],
        lookback_hours: float,
        deliver: Callable[[Suggestion, str], None],
        source: str = "Scheduled analysis",
    ) -> Dict[str, Outcome]:
        channels: List[str] = [c for c in channel_ids if c]
        logger.info("[scheduler] running %s for %d channel(s)", source, len(channels))

        oldest = int(self._clock() - lookback_hours * 60 * 60)
        outcomes: Dict[str, Outcome] = {}
        for channel_id in channels:
            with self.single_flight(channel_id) as ok:
                if not ok:
                    logger.info("[scheduler] %s busy, skipping this tick", channel_id)
                    outcomes[channel_id] = AnalysisInProgress(channel_id)
                    continue
                try:
                    outcomes[channel_id] = self._scheduled_channel(channel_id, oldest, source, deliver)
                except Exception:
                    # one channel's failure must not stop the rest
                    logger.exception("[scheduler] error analyzing %s", channel_id)
        return outcomes
