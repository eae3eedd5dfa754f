from types import SimpleNamespace

import pytest
from slack_sdk.errors import SlackApiError

from conversation_buffer import ConversationBuffer, Message
from dedup import DuplicateDetector
from orchestrator import Orchestrator
from slack_history import HistoryFetcher
from suggestion_store import Suggestion, SuggestionStore


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSlackClient:
    """
    conversations_history served from a list of pages; page N is returned for
    cursor "cN" (first page has no cursor).
    """

    def __init__(self, pages=None, error=None) -> None:
        self.pages = pages or []
        self.error = error
        self.history_calls = []
        self.posted = []

    def conversations_history(self, **params):
        self.history_calls.append(params)
        if self.error:
            raise SlackApiError("boom", {"ok": False, "error": self.error})
        cursor = params.get("cursor")
        idx = int(cursor[1:]) if cursor else 0
        if idx >= len(self.pages):
            return {"ok": True, "messages": [], "has_more": False}
        has_more = idx + 1 < len(self.pages)
        return {
            "ok": True,
            "messages": self.pages[idx],
            "has_more": has_more,
            "response_metadata": {"next_cursor": f"c{idx + 1}" if has_more else ""},
        }

    def chat_postMessage(self, **kwargs):
        self.posted.append(kwargs)
        return {"ok": True}


class FakeAnalyzer:
    provider = "openai"
    model = "gpt-4o-mini"

    def __init__(self, result=None, configured=True, exc=None) -> None:
        self.result = result or Suggestion(False, "nothing here")
        self.configured = configured
        self.exc = exc
        self.calls = []

    def is_configured(self):
        return self.configured

    def analyze(self, messages):
        self.calls.append(list(messages))
        if self.exc:
            raise self.exc
        return self.result


def slack_msg(ts, text="this is a real message", user="U1", **extra):
    m = {"type": "message", "user": user, "text": text, "ts": ts}
    m.update(extra)
    return m


def make_messages(n, start=100):
    return [Message(user=f"U{i}", text=f"message number {i}", timestamp=f"{start + i}.000100", added_at=start + i) for i in range(n)]


def fake_completion(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return SuggestionStore(max_history=100, clock=clock)


@pytest.fixture
def buffer(clock):
    return ConversationBuffer(window_hours=4, clock=clock)


@pytest.fixture
def slack_client():
    return FakeSlackClient()


@pytest.fixture
def make_orchestrator(buffer, store, clock, slack_client):
    def _make(analyzer=None, client=None, min_messages=5):
        return Orchestrator(
            buffer,
            store,
            DuplicateDetector(store),
            analyzer or FakeAnalyzer(),
            fetcher=HistoryFetcher(client or slack_client, clock=clock),
            min_messages=min_messages,
            clock=clock,
        )
    return _make
