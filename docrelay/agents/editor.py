"""
📝 The Editor (Tool-Loop Architecture)

Answers questions about the shared Notion page and edits it on
request. Operates in a call-execute-observe loop: the model sees
the rendered page, requests block operations, reads their results,
and finally answers in plain text.
"""

from __future__ import annotations

import json
from enum import Enum
from typing import Any, Protocol

from loguru import logger
from pydantic import BaseModel, Field

from docrelay.agents import AgentContext, BaseAgent
from docrelay.event_bus import EventBus
from docrelay.router import Router, RouterResponse, ToolCall

NO_ANSWER = "すみません、応答を生成できませんでした。"


class ToolRoundLimitExceeded(Exception):
    """The model kept requesting operations past the configured round limit."""

    def __init__(self, rounds: int):
        super().__init__(f"exceeded maximum tool-use rounds ({rounds})")
        self.rounds = rounds


class DocumentEditor(Protocol):
    """What the editor needs from the document store."""
    page_url: str

    def append(self, texts: list[str]) -> None: ...
    def replace(self, unit_id: str, text: str) -> None: ...
    def delete(self, unit_id: str) -> None: ...


EDITOR_TOOLS = [
    {
        "type": "function",
        "function": {
            "name": "append_to_page",
            "description": "Notionページの末尾にテキストを追加する。各要素が1つの段落ブロックになる。",
            "parameters": {
                "type": "object",
                "properties": {
                    "texts": {
                        "type": "array",
                        "items": {"type": "string"},
                        "description": "追加するテキストの配列",
                    }
                },
                "required": ["texts"]
            }
        }
    },
    {
        "type": "function",
        "function": {
            "name": "update_block",
            "description": "指定したブロックのテキストを更新する。block_idはNotionページの内容から取得できる。",
            "parameters": {
                "type": "object",
                "properties": {
                    "block_id": {"type": "string", "description": "更新するブロックのID"},
                    "text": {"type": "string", "description": "新しいテキスト"}
                },
                "required": ["block_id", "text"]
            }
        }
    },
    {
        "type": "function",
        "function": {
            "name": "delete_block",
            "description": "指定したブロックを削除する。",
            "parameters": {
                "type": "object",
                "properties": {
                    "block_id": {"type": "string", "description": "削除するブロックのID"}
                },
                "required": ["block_id"]
            }
        }
    },
]


# ---------------------------------------------------------------------------
# Loop state
# ---------------------------------------------------------------------------

class LoopState(str, Enum):
    AWAITING_MODEL = "awaiting_model"
    EXECUTING_TOOLS = "executing_tools"
    DONE = "done"


class ToolOutcome(BaseModel):
    tool_call_id: str
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)
    result: str
    ok: bool


class EditorResult(BaseModel):
    reply: str
    rounds: int
    outcomes: list[ToolOutcome] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Tool execution
# ---------------------------------------------------------------------------

class ToolExecutor:
    """Maps tool calls onto the document editor. Never raises."""

    def __init__(self, document: DocumentEditor):
        self.document = document

    def execute(self, call: ToolCall) -> ToolOutcome:
        try:
            args = json.loads(call.arguments or "{}")
        except json.JSONDecodeError:
            return self._outcome(call, {}, "エラー: 引数のJSONが不正です。", ok=False)

        try:
            if call.name == "append_to_page":
                texts = args["texts"]
                if not isinstance(texts, list) or not all(isinstance(t, str) for t in texts):
                    raise ValueError("texts は文字列の配列で指定してください。")
                self.document.append(texts)
                result = f"追加完了。ページURL: {self.document.page_url}"
            elif call.name == "update_block":
                self.document.replace(args["block_id"], args["text"])
                result = f"更新完了。ページURL: {self.document.page_url}"
            elif call.name == "delete_block":
                self.document.delete(args["block_id"])
                result = f"削除完了。ページURL: {self.document.page_url}"
            else:
                return self._outcome(call, args, f"不明なツール: {call.name}", ok=False)
        except Exception as e:
            logger.warning(f"[EDITOR] {call.name} failed: {e}")
            return self._outcome(call, args, f"エラー: {e}", ok=False)

        return self._outcome(call, args, result, ok=True)

    @staticmethod
    def _outcome(call: ToolCall, args: Any, result: str, ok: bool) -> ToolOutcome:
        return ToolOutcome(
            tool_call_id=call.id,
            name=call.name,
            arguments=args if isinstance(args, dict) else {"value": args},
            result=result,
            ok=ok,
        )


# ---------------------------------------------------------------------------
# Agent
# ---------------------------------------------------------------------------

class EditorAgent(BaseAgent):
    role = "editor"

    system_prompt = """あなたはマルタ村プロジェクトのNotionページを管理するパートナーAIです。
ユーザーからの質問にはNotionの内容を参照して答えてください。
修正・追加の依頼には、現在の内容を示した上で修正案を提案し、確認を取ってから実行してください。
実行後はNotionページのURLを添えて報告してください。
LINEはMarkdownに対応していないので**や##などの記号は使わないでください。"""

    def __init__(
        self,
        router: Router,
        document: DocumentEditor,
        max_rounds: int = 10,
        max_tokens: int = 2048,
        bus: EventBus | None = None,
    ):
        super().__init__(router)
        self.tools = ToolExecutor(document)
        self.max_rounds = max_rounds
        self.max_tokens = max_tokens
        self.bus = bus

    def build_messages(self, context: AgentContext) -> list[dict[str, Any]]:
        user_content = f"""【Notionページの現在の内容】
{context.document}

【ユーザーのメッセージ】
{context.message}"""

        return [self._system_msg(), self._user_msg(user_content)]

    def run(self, context: AgentContext, **kwargs) -> EditorResult:
        """Override run to drive the tool loop instead of a single shot."""
        messages = self.build_messages(context)
        outcomes: list[ToolOutcome] = []
        state = LoopState.AWAITING_MODEL
        tool_rounds = 0

        while True:
            logger.debug(f"[EDITOR] Round {tool_rounds + 1} — {state.value}")
            response = self.router.complete(
                role=self.role,
                messages=messages,
                tools=EDITOR_TOOLS,
                max_tokens=self.max_tokens,
                **kwargs,
            )

            if not response.requests_tools:
                state = LoopState.DONE
                break

            if tool_rounds >= self.max_rounds:
                logger.warning(f"[EDITOR] Still requesting tools after {tool_rounds} rounds, giving up.")
                raise ToolRoundLimitExceeded(tool_rounds)

            state = LoopState.EXECUTING_TOOLS
            tool_rounds += 1
            messages.append(self._assistant_msg(response))

            for call in response.tool_calls:
                logger.info(f"[EDITOR] 🛠️ Tool call: {call.name}")
                outcome = self.tools.execute(call)
                outcomes.append(outcome)
                messages.append({
                    "role": "tool",
                    "tool_call_id": call.id,
                    "name": call.name,
                    "content": outcome.result,
                })
                if self.bus is not None:
                    self.bus.emit("tool_executed", "editor", {
                        "user_id": context.user_id,
                        "tool": call.name,
                        "ok": outcome.ok,
                        "result": outcome.result,
                    })

            state = LoopState.AWAITING_MODEL

        result = self.parse_response(response, context)
        result.rounds = tool_rounds + 1
        result.outcomes = outcomes
        logger.info(f"[EDITOR] Done in {result.rounds} model call(s), {len(outcomes)} operation(s)")
        return result

    def parse_response(self, response: RouterResponse, context: AgentContext) -> EditorResult:
        return EditorResult(reply=response.content or NO_ANSWER, rounds=1)

    @staticmethod
    def _assistant_msg(response: RouterResponse) -> dict[str, Any]:
        msg: dict[str, Any] = {"role": "assistant", "content": response.content or None}
        msg["tool_calls"] = [call.to_message() for call in response.tool_calls]
        return msg
