from datetime import datetime, timedelta, timezone

from conftest import (
    FakeDocument,
    FakeFiler,
    FakeReader,
    FakeRouter,
    judgment_response,
    text_response,
    tool_response,
)
from docrelay.agents.classifier import ClassifierAgent
from docrelay.agents.editor import EditorAgent
from docrelay.confirmation import InMemoryProposalStore, PendingProposal, PhraseMatcher
from docrelay.config_loader import RelayConfig
from docrelay.controller import CANCELLED_REPLY, ROUND_LIMIT_REPLY, Relay
from docrelay.event_bus import EventBus
from docrelay.issues import IssueFilingError

TARGETS = {"モノハブ": "monohub", "推し活": "oshi-katsu"}
MATCHER = PhraseMatcher(
    affirmative=["はい", "yes", "そうして", "お願い", "作って", "よろしく", "いいよ", "ええよ"],
    negative=["いいえ", "no", "やめて", "キャンセル", "違う", "ちがう"],
)
NOT_ISSUE = {"is_issue": False}
ISSUE = {
    "is_issue": True,
    "target_name": "モノハブ",
    "title": "ログインできない",
    "body": "iPhoneでログインボタンが反応しない",
    "auxiliary_instruction": "ログインボタンのタップ判定を修正",
    "confirm_message": "GitHubにIssueを作成しますか？",
}


class Clock:
    def __init__(self):
        self.now = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class Harness:
    def __init__(self, judgments=(), editor_responses=(), filer=None, max_rounds=10):
        self.clock = Clock()
        self.store = InMemoryProposalStore()
        self.classifier_router = FakeRouter([judgment_response(**j) for j in judgments])
        self.editor_router = FakeRouter(list(editor_responses))
        self.document = FakeDocument()
        self.reader = FakeReader()
        self.filer = filer or FakeFiler()
        self.bus = EventBus()
        self.events = []
        self.bus.subscribe(self.events.append)
        self.relay = Relay(
            classifier=ClassifierAgent(self.classifier_router, list(TARGETS)),
            editor=EditorAgent(self.editor_router, self.document, max_rounds=max_rounds),
            reader=self.reader,
            filer=self.filer,
            targets=TARGETS,
            store=self.store,
            matcher=MATCHER,
            bus=self.bus,
            clock=self.clock,
        )

    def pend(self, repository="monohub", title="ログインできない", body="詳細", ttl=timedelta(minutes=5)):
        self.store.put("U1", PendingProposal(
            target_name="モノハブ",
            repository=repository,
            title=title,
            body=body,
            auxiliary_instruction="修正してください",
            expires_at=self.clock() + ttl,
        ))

    @property
    def event_types(self):
        return [e.event_type for e in self.events]


def test_yes_without_pending_runs_full_editor_path():
    h = Harness(judgments=[NOT_ISSUE], editor_responses=[text_response("何についての「はい」ですか？")])

    reply = h.relay.handle("U1", "はい")

    assert reply.kind == "answer"
    assert reply.text == "何についての「はい」ですか？"
    assert len(h.classifier_router.calls) == 1
    assert h.reader.fetches == 1
    assert len(h.editor_router.calls) == 1
    assert "(ページは空です)" in h.editor_router.calls[0]["messages"][1]["content"]
    assert h.filer.calls == []


def test_affirmative_commits_pending_proposal():
    h = Harness()
    h.pend(repository="monohub", title="ログインできない", body="詳細")

    reply = h.relay.handle("U1", "はい、お願いします")

    assert h.filer.calls == [("monohub", "ログインできない", "詳細")]
    assert reply.kind == "committed"
    assert reply.text == (
        "Issue作成しました！\n\n"
        "https://github.com/marutamura/monohub/issues/7\n\n"
        "修正指示文はこちら↓\n\n修正してください"
    )
    assert h.store.get("U1", h.clock()) is None
    # No model was consulted.
    assert h.classifier_router.calls == []
    assert h.editor_router.calls == []
    assert "proposal_committed" in h.event_types


def test_failed_filing_still_clears_proposal():
    h = Harness(
        judgments=[NOT_ISSUE],
        editor_responses=[text_response("?")],
        filer=FakeFiler(fail_with=IssueFilingError("GitHub API error: Not Found")),
    )
    h.pend(repository="monohub")

    reply = h.relay.handle("U1", "yes")

    assert len(h.filer.calls) == 1
    assert h.filer.calls[0][0] == "monohub"
    assert reply.kind == "filing_failed"
    assert reply.text == "Issueの作成に失敗しました。GitHub API error: Not Found"
    assert h.store.get("U1", h.clock()) is None

    # No retry on the next yes.
    assert h.relay.handle("U1", "yes").kind == "answer"
    assert len(h.filer.calls) == 1


def test_expired_proposal_is_never_committed():
    h = Harness(judgments=[NOT_ISSUE], editor_responses=[text_response("通常の返答")])
    h.pend(ttl=timedelta(minutes=5))
    h.clock.advance(minutes=5, seconds=1)

    reply = h.relay.handle("U1", "はい")

    assert h.filer.calls == []
    assert reply.kind == "answer"
    assert reply.text == "通常の返答"
    assert h.store.get("U1", h.clock()) is None


def test_proposal_commits_at_exact_expiry_instant():
    h = Harness()
    h.pend(ttl=timedelta(minutes=5))
    h.clock.advance(minutes=5)

    reply = h.relay.handle("U1", "はい")

    assert reply.kind == "committed"
    assert len(h.filer.calls) == 1


def test_proposal_expires_one_microsecond_after_window():
    h = Harness(judgments=[NOT_ISSUE], editor_responses=[text_response("通常の返答")])
    h.pend(ttl=timedelta(minutes=5))
    h.clock.advance(minutes=5, microseconds=1)

    reply = h.relay.handle("U1", "はい")

    assert reply.kind == "answer"
    assert h.filer.calls == []


def test_negative_cancels_without_side_effects():
    h = Harness()
    h.pend()

    reply = h.relay.handle("U1", "いいえ")

    assert reply.kind == "cancelled"
    assert reply.text == CANCELLED_REPLY
    assert h.filer.calls == []
    assert h.store.get("U1", h.clock()) is None
    assert h.classifier_router.calls == []
    assert h.event_types == ["proposal_cancelled"]


def test_unrelated_message_leaves_pending_untouched():
    h = Harness(judgments=[NOT_ISSUE], editor_responses=[text_response("今日は晴れです")])
    h.pend(repository="monohub")

    reply = h.relay.handle("U1", "今日の天気は？")

    assert reply.text == "今日は晴れです"
    assert h.store.get("U1", h.clock()).repository == "monohub"
    assert h.filer.calls == []


def test_actionable_request_creates_proposal():
    h = Harness(judgments=[ISSUE])

    reply = h.relay.handle("U1", "モノハブでログインできない")

    assert reply.kind == "confirm"
    assert reply.text == "GitHubにIssueを作成しますか？"
    proposal = h.store.get("U1", h.clock())
    assert proposal.repository == "monohub"
    assert proposal.title == "ログインできない"
    assert proposal.auxiliary_instruction == "ログインボタンのタップ判定を修正"
    assert proposal.expires_at == h.clock() + timedelta(minutes=5)
    assert h.filer.calls == []
    assert h.reader.fetches == 0
    assert h.event_types == ["proposal_created"]


def test_new_proposal_replaces_previous_one():
    other = {**ISSUE, "target_name": "推し活", "title": "通知が来ない"}
    h = Harness(judgments=[ISSUE, other])

    h.relay.handle("U1", "モノハブでログインできない")
    h.relay.handle("U1", "推し活の通知が来ない")

    assert h.store.get("U1", h.clock()).repository == "oshi-katsu"

    h.relay.handle("U1", "よろしく")
    assert h.filer.calls == [("oshi-katsu", "通知が来ない", ISSUE["body"])]


def test_unknown_target_falls_through_to_editor():
    h = Harness(
        judgments=[{**ISSUE, "target_name": "存在しないアプリ"}],
        editor_responses=[text_response("そのアプリは管理対象外です")],
    )

    reply = h.relay.handle("U1", "存在しないアプリが落ちる")

    assert reply.kind == "answer"
    assert h.store.get("U1", h.clock()) is None
    assert h.reader.fetches == 1
    assert "target_unresolved" in h.event_types


def test_full_confirmation_round_trip():
    h = Harness(judgments=[ISSUE])

    assert h.relay.handle("U1", "モノハブでログインできない").kind == "confirm"
    h.clock.advance(minutes=2)
    reply = h.relay.handle("U1", "作って")

    assert reply.kind == "committed"
    assert h.filer.calls == [("monohub", ISSUE["title"], ISSUE["body"])]
    assert ISSUE["auxiliary_instruction"] in reply.text


def test_editor_edits_are_reported_with_page_url():
    h = Harness(
        judgments=[NOT_ISSUE],
        editor_responses=[
            tool_response(("c1", "append_to_page", {"texts": ["A", "B"]})),
            text_response("追加しました https://www.notion.so/abc123"),
        ],
    )

    reply = h.relay.handle("U1", "AとBを追加して")

    assert h.document.calls == [("append", ["A", "B"])]
    assert "https://www.notion.so/abc123" in reply.text
    assert h.event_types[-1] == "agent_completed"


def test_round_limit_becomes_failure_reply():
    looping = [tool_response((f"c{i}", "delete_block", {"block_id": "b"})) for i in range(3)]
    h = Harness(judgments=[NOT_ISSUE], editor_responses=looping, max_rounds=2)

    reply = h.relay.handle("U1", "全部消して")

    assert reply.kind == "round_limit"
    assert reply.text == ROUND_LIMIT_REPLY
    assert h.document.calls == [("delete", "b"), ("delete", "b")]


def test_injected_empty_store_is_used():
    h = Harness()

    assert h.relay.store is h.store


def test_default_matcher_and_targets_confirm_proposals():
    filer = FakeFiler()
    store = InMemoryProposalStore()
    config = RelayConfig()
    relay = Relay(
        classifier=ClassifierAgent(FakeRouter([judgment_response(**ISSUE)]), list(config.targets)),
        editor=EditorAgent(FakeRouter([]), FakeDocument()),
        reader=FakeReader(),
        filer=filer,
        targets=config.targets,
        store=store,
    )

    assert relay.handle("U1", "モノハブでログインできない").kind == "confirm"
    reply = relay.handle("U1", "はい")

    assert reply.kind == "committed"
    assert filer.calls == [("monohub", ISSUE["title"], ISSUE["body"])]
    assert len(store) == 0


def test_per_user_locks_do_not_accumulate():
    h = Harness(
        judgments=[NOT_ISSUE] * 20,
        editor_responses=[text_response("ok")] * 20,
    )

    for n in range(20):
        h.relay.handle(f"U{n}", "こんにちは")

    assert len(h.relay._user_locks) == 0
