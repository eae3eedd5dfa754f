import threading

import pytest
from slack_sdk.errors import SlackApiError

from conftest import FakeAnalyzer, FakeSlackClient, make_messages, slack_msg
from orchestrator import (
    Accepted,
    AnalysisFailed,
    AnalysisInProgress,
    DuplicateSkipped,
    NotEnoughMessages,
    NotPostWorthy,
    NothingNew,
)
from slack_history import ChannelNotFound
from suggestion_store import Suggestion, fingerprint

WORTHY = Suggestion(True, "good story", linkedin_draft="X", x_draft="Y")
SHIPPED = Suggestion(
    True,
    "infra win",
    linkedin_draft="We shipped a new caching layer today and latency dropped 40%",
    x_draft="caching ftw",
)


def fill_buffer(buffer, n, channel="C1"):
    for i in range(n):
        buffer.add(channel, f"U{i}", f"qualifying message {i}", f"{100 + i}.0")


def history_pages(n, start=100):
    return [[slack_msg(f"{start + i}.0", text=f"history message {i}") for i in range(n)]]


def test_end_to_end_accept(buffer, store, make_orchestrator):
    fill_buffer(buffer, 6)
    analyzer = FakeAnalyzer(WORTHY)
    orch = make_orchestrator(analyzer)

    outcome = orch.analyze_buffer("C1")

    assert outcome == Accepted(reasoning="good story", linkedin_draft="X", x_draft="Y")
    assert store.get(fingerprint("X")) == WORTHY
    assert [m.text for m in analyzer.calls[0]] == [f"qualifying message {i}" for i in range(6)]


def test_not_enough_messages_skips_analysis(buffer, store, make_orchestrator):
    fill_buffer(buffer, 4)
    analyzer = FakeAnalyzer(WORTHY)

    outcome = make_orchestrator(analyzer).analyze_buffer("C1")

    assert outcome == NotEnoughMessages(needed=5, have=4)
    assert analyzer.calls == []
    assert len(store) == 0


def test_buffer_analysis_sets_no_checkpoint(buffer, store, make_orchestrator):
    fill_buffer(buffer, 5)
    make_orchestrator(FakeAnalyzer(WORTHY)).analyze_buffer("C1")
    assert store.checkpoints("sync") == {}
    assert store.checkpoints("analyzed") == {}


def test_not_post_worthy(store, make_orchestrator):
    orch = make_orchestrator(FakeAnalyzer(Suggestion(False, "just logistics")))
    outcome = orch.run_analysis(make_messages(5))
    assert outcome == NotPostWorthy(reasoning="just logistics")
    assert len(store) == 0


def test_error_result(store, make_orchestrator):
    orch = make_orchestrator(FakeAnalyzer(Suggestion(False, "Analysis failed: boom", error=True)))
    outcome = orch.run_analysis(make_messages(5))
    assert outcome == AnalysisFailed(reasoning="Analysis failed: boom")
    assert len(store) == 0


def test_on_demand_duplicate_is_returned_with_warning(store, make_orchestrator):
    store.store(SHIPPED)
    orch = make_orchestrator(FakeAnalyzer(SHIPPED))

    outcome = orch.run_analysis(make_messages(5))

    assert isinstance(outcome, Accepted)
    assert outcome.duplicate_warning is not None
    assert outcome.duplicate_warning.similarity == 1.0
    assert outcome.duplicate_warning.matched_with is SHIPPED
    assert len(store) == 1


def test_duplicate_skipped_when_warnings_disabled(store, make_orchestrator):
    store.store(SHIPPED)
    orch = make_orchestrator(FakeAnalyzer(SHIPPED))
    msgs = make_messages(5)

    outcome = orch.run_analysis(msgs, channel_id="C1", checkpoint_kind="analyzed", warn_on_duplicate=False)

    assert outcome == DuplicateSkipped(similarity=1.0)
    assert len(store) == 1
    assert store.get_checkpoint("analyzed", "C1") == msgs[-1].timestamp


def test_checkpoint_advances_even_when_not_post_worthy(store, make_orchestrator):
    orch = make_orchestrator(FakeAnalyzer(Suggestion(False, "meh")))
    msgs = make_messages(5)
    orch.run_analysis(msgs, channel_id="C1", checkpoint_kind="sync")
    assert store.get_checkpoint("sync", "C1") == msgs[-1].timestamp


def test_hard_failure_does_not_checkpoint(store, make_orchestrator):
    orch = make_orchestrator(FakeAnalyzer(exc=RuntimeError("down")))
    with pytest.raises(RuntimeError):
        orch.run_analysis(make_messages(5), channel_id="C1", checkpoint_kind="sync")
    assert store.get_checkpoint("sync", "C1") is None


def test_history_analysis(make_orchestrator, clock):
    client = FakeSlackClient(pages=history_pages(5))
    analyzer = FakeAnalyzer(WORTHY)
    outcome = make_orchestrator(analyzer, client=client).analyze_history("C1", "1d")

    assert isinstance(outcome, Accepted)
    assert client.history_calls[0]["oldest"] == str(int(clock.now - 86400))


def test_sync_first_run_uses_default_lookback_and_checkpoints(store, make_orchestrator, clock):
    client = FakeSlackClient(pages=history_pages(5))
    make_orchestrator(FakeAnalyzer(WORTHY), client=client).sync("C1")

    assert client.history_calls[0]["oldest"] == str(int(clock.now - 86400))
    assert store.get_checkpoint("sync", "C1") == "104.0"


def test_sync_resumes_from_checkpoint(store, make_orchestrator):
    store.set_checkpoint("sync", "C1", "104.0")
    client = FakeSlackClient(pages=history_pages(5, start=200))
    make_orchestrator(FakeAnalyzer(WORTHY), client=client).sync("C1")

    assert client.history_calls[0]["oldest"] == "104.0"
    assert store.get_checkpoint("sync", "C1") == "204.0"


def test_sync_with_too_few_messages_keeps_checkpoint(store, make_orchestrator):
    store.set_checkpoint("sync", "C1", "104.0")
    client = FakeSlackClient(pages=history_pages(2, start=200))
    outcome = make_orchestrator(FakeAnalyzer(WORTHY), client=client).sync("C1")

    assert outcome == NotEnoughMessages(needed=5, have=2)
    assert store.get_checkpoint("sync", "C1") == "104.0"


def test_busy_channel_is_turned_away(buffer, make_orchestrator):
    fill_buffer(buffer, 5)
    analyzer = FakeAnalyzer(WORTHY)
    orch = make_orchestrator(analyzer)

    with orch.single_flight("C1") as ok:
        assert ok
        assert orch.analyze_buffer("C1") == AnalysisInProgress("C1")
        assert orch.sync("C1") == AnalysisInProgress("C1")

    assert analyzer.calls == []
    assert isinstance(orch.analyze_buffer("C1"), Accepted)


def test_single_flight_is_per_channel(make_orchestrator):
    orch = make_orchestrator()
    with orch.single_flight("C1") as a:
        with orch.single_flight("C2") as b:
            assert a and b


def test_single_flight_across_threads(make_orchestrator):
    orch = make_orchestrator()
    seen = []
    with orch.single_flight("C1"):
        def other():
            with orch.single_flight("C1") as ok:
                seen.append(ok)
        t = threading.Thread(target=other)
        t.start()
        t.join()
    assert seen == [False]


# ---- scheduled ----

class Deliveries(list):
    def __call__(self, suggestion, source):
        self.append((suggestion, source))


def test_scheduled_accept_stores_checkpoints_and_delivers(store, make_orchestrator, clock):
    client = FakeSlackClient(pages=history_pages(6))
    deliver = Deliveries()
    orch = make_orchestrator(FakeAnalyzer(WORTHY), client=client)

    outcomes = orch.run_scheduled_analysis(["C1"], 6, deliver, source="6-hour analysis")

    assert isinstance(outcomes["C1"], Accepted)
    assert deliver == [(WORTHY, "6-hour analysis")]
    assert store.get_checkpoint("analyzed", "C1") == "105.0"
    assert store.get(fingerprint("X")) == WORTHY
    assert client.history_calls[0]["oldest"] == str(int(clock.now - 6 * 3600))


def test_scheduled_skips_when_nothing_new(store, make_orchestrator):
    store.set_checkpoint("analyzed", "C", "100.0")
    client = FakeSlackClient(pages=history_pages(5, start=86))  # newest is 90.0
    analyzer = FakeAnalyzer(WORTHY)
    deliver = Deliveries()

    outcomes = make_orchestrator(analyzer, client=client).run_scheduled_analysis(["C"], 6, deliver)

    assert outcomes["C"] == NothingNew(channel_id="C", checkpoint="100.0")
    assert analyzer.calls == []
    assert deliver == []
    assert store.get_checkpoint("analyzed", "C") == "100.0"


def test_scheduled_compares_checkpoints_numerically(store, make_orchestrator):
    store.set_checkpoint("analyzed", "C", "99.0")
    client = FakeSlackClient(pages=history_pages(5, start=96))  # newest is 100.0
    analyzer = FakeAnalyzer(WORTHY)
    make_orchestrator(analyzer, client=client).run_scheduled_analysis(["C"], 6, Deliveries())
    assert len(analyzer.calls) == 1


def test_scheduled_not_post_worthy_still_checkpoints(store, make_orchestrator):
    client = FakeSlackClient(pages=history_pages(5))
    deliver = Deliveries()
    outcomes = make_orchestrator(FakeAnalyzer(Suggestion(False, "meh")), client=client).run_scheduled_analysis(
        ["C1"], 6, deliver
    )
    assert outcomes["C1"] == NotPostWorthy("meh")
    assert store.get_checkpoint("analyzed", "C1") == "104.0"
    assert deliver == []


def test_scheduled_drops_duplicates(store, make_orchestrator):
    store.store(SHIPPED)
    client = FakeSlackClient(pages=history_pages(5))
    deliver = Deliveries()

    outcomes = make_orchestrator(FakeAnalyzer(SHIPPED), client=client).run_scheduled_analysis(["C1"], 6, deliver)

    assert outcomes["C1"] == DuplicateSkipped(similarity=1.0)
    assert deliver == []
    assert len(store) == 1


def test_scheduled_failure_in_one_channel_does_not_stop_others(store, make_orchestrator, clock):
    class PerChannel(FakeSlackClient):
        def conversations_history(self, **params):
            if params["channel"] == "BAD":
                self.history_calls.append(params)
                raise SlackApiError("nope", {"ok": False, "error": "channel_not_found"})
            return super().conversations_history(**params)

    client = PerChannel(pages=history_pages(5))
    deliver = Deliveries()
    outcomes = make_orchestrator(FakeAnalyzer(WORTHY), client=client).run_scheduled_analysis(
        ["BAD", "", "C1"], 6, deliver
    )

    assert "BAD" not in outcomes
    assert isinstance(outcomes["C1"], Accepted)
    assert len(deliver) == 1


def test_scheduled_analyzer_crash_is_contained(make_orchestrator):
    client = FakeSlackClient(pages=history_pages(5))
    orch = make_orchestrator(FakeAnalyzer(exc=ChannelNotFound("gone")), client=client)
    assert orch.run_scheduled_analysis(["C1"], 6, Deliveries()) == {}
