"""
DOCRELAY Controller — The Turn Router

It is NOT smart. It is deterministic.

For every inbound text message it decides, in order:
  1. Is this a yes/no answer to a pending issue proposal?
  2. Is this a fix/feature request for a known app? → propose
  3. Otherwise → hand the message and the page to the editor

Exactly one reply text comes out of every handled turn.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable, Literal, Protocol

from loguru import logger
from pydantic import BaseModel

from docrelay.agents import AgentContext
from docrelay.agents.classifier import ClassifierAgent
from docrelay.agents.editor import EditorAgent, ToolRoundLimitExceeded
from docrelay.confirmation import (
    InMemoryProposalStore,
    KeyedLock,
    PendingProposal,
    PhraseMatcher,
    ProposalStore,
    ReplyIntent,
    ReplyMatcher,
)
from docrelay.config_loader import ConfigError, RelayConfig, RepliesConfig, Secrets
from docrelay.event_bus import EventBus
from docrelay.issues import IssueFiler
from docrelay.notion import DocumentMutator, DocumentReader, NotionClient
from docrelay.router import Router
from docrelay.snapshot import DocumentUnit, format_snapshot

CANCELLED_REPLY = "キャンセルしました。他に何かあれば聞いてください！"
ROUND_LIMIT_REPLY = "ツールの実行回数が上限に達したため処理を中断しました。"


class SnapshotSource(Protocol):
    def fetch_snapshot(self) -> list[DocumentUnit]: ...


class IssueSink(Protocol):
    def file(self, repository: str, title: str, body: str) -> str: ...


class TurnReply(BaseModel):
    text: str
    kind: Literal["answer", "confirm", "committed", "filing_failed", "cancelled", "round_limit"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Relay:
    """Routes one inbound message to confirmation, classification, or the editor."""

    def __init__(
        self,
        classifier: ClassifierAgent,
        editor: EditorAgent,
        reader: SnapshotSource,
        filer: IssueSink,
        targets: dict[str, str],
        store: ProposalStore | None = None,
        matcher: ReplyMatcher | None = None,
        proposal_ttl: timedelta = timedelta(minutes=5),
        bus: EventBus | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.classifier = classifier
        self.editor = editor
        self.reader = reader
        self.filer = filer
        self.targets = targets
        self.store = store if store is not None else InMemoryProposalStore()
        self.matcher = matcher if matcher is not None else PhraseMatcher.from_config(RepliesConfig())
        self.proposal_ttl = proposal_ttl
        self.bus = bus if bus is not None else EventBus()
        self.clock = clock
        self._user_locks = KeyedLock()

    @classmethod
    def from_config(cls, config: RelayConfig, secrets: Secrets, bus: EventBus | None = None) -> "Relay":
        """Wire the relay to the real Notion, GitHub and model backends."""
        secrets.require("notion_token", "github_token")
        if not config.notion.page_id:
            raise ConfigError("notion.page_id is not set (NOTION_PAGE_ID)")

        bus = bus if bus is not None else EventBus()
        router = Router(config)
        timeout = config.http.timeout_seconds
        notion = NotionClient(secrets.notion_token, config.notion, timeout=timeout)
        page_id = config.notion.page_id

        return cls(
            classifier=ClassifierAgent(
                router,
                target_names=list(config.targets),
                max_tokens=config.limits.classifier_max_tokens,
            ),
            editor=EditorAgent(
                router,
                DocumentMutator(notion, page_id),
                max_rounds=config.limits.max_tool_rounds,
                max_tokens=config.limits.editor_max_tokens,
                bus=bus,
            ),
            reader=DocumentReader(notion, page_id, page_size=config.limits.page_size),
            filer=IssueFiler(secrets.github_token, config.github, timeout=timeout),
            targets=dict(config.targets),
            matcher=PhraseMatcher.from_config(config.replies),
            proposal_ttl=timedelta(seconds=config.limits.proposal_ttl_seconds),
            bus=bus,
        )

    # -----------------------------------------------------------------------
    # Turn handling
    # -----------------------------------------------------------------------

    def handle(self, user_id: str, message: str) -> TurnReply:
        """Produce the single reply for one inbound text message."""
        with self._user_locks.hold(user_id):
            reply = self._answer_pending(user_id, message)
            if reply is not None:
                return reply

            reply = self._propose_issue(user_id, message)
            if reply is not None:
                return reply

            return self._run_editor(user_id, message)

    def _answer_pending(self, user_id: str, message: str) -> TurnReply | None:
        intent = self.matcher.classify(message)
        if intent == ReplyIntent.NEITHER:
            return None

        pending = self.store.get(user_id, self.clock())
        if pending is None:
            return None

        if intent == ReplyIntent.NEGATIVE:
            self.store.delete(user_id)
            logger.info(f"[RELAY] Proposal for {user_id} cancelled")
            self.bus.emit("proposal_cancelled", "relay", {"user_id": user_id, "repository": pending.repository})
            return TurnReply(text=CANCELLED_REPLY, kind="cancelled")

        return self._commit(user_id, pending)

    def _commit(self, user_id: str, pending: PendingProposal) -> TurnReply:
        try:
            url = self.filer.file(pending.repository, pending.title, pending.body)
        except Exception as e:
            self.store.delete(user_id)
            logger.error(f"[RELAY] Issue filing failed for {pending.repository}: {e}")
            self.bus.emit("proposal_failed", "relay", {
                "user_id": user_id, "repository": pending.repository, "error": str(e),
            })
            return TurnReply(text=f"Issueの作成に失敗しました。{e}", kind="filing_failed")

        self.store.delete(user_id)
        self.bus.emit("proposal_committed", "relay", {
            "user_id": user_id, "repository": pending.repository, "url": url,
        })
        return TurnReply(
            text=f"Issue作成しました！\n\n{url}\n\n修正指示文はこちら↓\n\n{pending.auxiliary_instruction}",
            kind="committed",
        )

    def _propose_issue(self, user_id: str, message: str) -> TurnReply | None:
        judgment = self.classifier.classify(message, user_id=user_id)
        if not judgment.is_issue:
            return None

        repository = self.targets.get(judgment.target_name or "")
        if not repository:
            logger.info(f"[RELAY] Unknown target '{judgment.target_name}', falling through to editor")
            self.bus.emit("target_unresolved", "relay", {"user_id": user_id, "target_name": judgment.target_name})
            return None

        proposal = PendingProposal(
            target_name=judgment.target_name,
            repository=repository,
            title=judgment.title,
            body=judgment.body,
            auxiliary_instruction=judgment.auxiliary_instruction,
            expires_at=self.clock() + self.proposal_ttl,
        )
        self.store.put(user_id, proposal)
        logger.info(f"[RELAY] Proposal stored for {user_id} → {repository}")
        self.bus.emit("proposal_created", "relay", {
            "user_id": user_id, "repository": repository, "title": proposal.title,
        })
        return TurnReply(text=judgment.confirm_message, kind="confirm")

    def _run_editor(self, user_id: str, message: str) -> TurnReply:
        document = format_snapshot(self.reader.fetch_snapshot())
        context = AgentContext(user_id=user_id, message=message, document=document)

        try:
            result = self.editor.run(context)
        except ToolRoundLimitExceeded as e:
            logger.error(f"[RELAY] {e}")
            return TurnReply(text=ROUND_LIMIT_REPLY, kind="round_limit")

        self.bus.emit("agent_completed", "editor", {
            "user_id": user_id, "rounds": result.rounds, "operations": len(result.outcomes),
        })
        return TurnReply(text=result.reply, kind="answer")
