"""
🔎 The Classifier

Decides whether a chat message is a bug report, fix request or
feature request for one of the known apps, and if so drafts the
issue and the confirmation prompt. Never files anything itself.
"""

from __future__ import annotations

import json
from typing import Any

from loguru import logger
from pydantic import BaseModel, ValidationError, model_validator

from docrelay.agents import AgentContext, BaseAgent
from docrelay.router import Router, RouterResponse


class Classification(BaseModel):
    is_issue: bool = False
    target_name: str | None = None
    title: str | None = None
    body: str | None = None
    auxiliary_instruction: str | None = None
    confirm_message: str | None = None

    @model_validator(mode="after")
    def require_proposal_fields(self) -> "Classification":
        if self.is_issue:
            missing = [
                name for name in ("target_name", "title", "body", "auxiliary_instruction", "confirm_message")
                if not getattr(self, name)
            ]
            if missing:
                raise ValueError(f"is_issue=true but missing: {', '.join(missing)}")
        return self


NOT_AN_ISSUE = Classification(is_issue=False)


def _strip_fences(content: str) -> str:
    if content.startswith("```"):
        lines = content.split("\n")
        lines = [l for l in lines if not l.strip().startswith("```") and not l.strip().lower() == "json"]
        content = "\n".join(lines)
    return content


class ClassifierAgent(BaseAgent):
    role = "classifier"

    prompt_template = """You are a helper that analyzes user messages and returns JSON only.

Determine if the message is an app bug report, fix request, or feature request for one of these apps:
{targets}

If it IS a fix/bug/feature request, return ONLY this JSON (no other text):
{{"is_issue":true,"target_name":"アプリ名","title":"タイトル","body":"詳細説明","auxiliary_instruction":"開発担当者への具体的な修正指示","confirm_message":"GitHubにIssueを作成しますか？\\n\\nアプリ: [アプリ名]\\n内容: [タイトル]"}}

If it is NOT a fix request, return ONLY this JSON (no other text):
{{"is_issue":false}}

IMPORTANT: Return raw JSON only. No markdown, no explanation, no code blocks."""

    def __init__(self, router: Router, target_names: list[str], max_tokens: int = 1024):
        super().__init__(router)
        self.target_names = target_names
        self.max_tokens = max_tokens

    def classify(self, message: str, user_id: str = "unknown") -> Classification:
        return self.run(
            AgentContext(user_id=user_id, message=message),
            max_tokens=self.max_tokens,
            response_format={"type": "json_object"},
        )

    def build_messages(self, context: AgentContext) -> list[dict[str, Any]]:
        targets = "\n".join(f"- {name}" for name in self.target_names)
        prompt = self.prompt_template.format(targets=targets)
        return [self._user_msg(f"{prompt}\n\nユーザーメッセージ: {context.message}")]

    def parse_response(self, response: RouterResponse, context: AgentContext) -> Classification:
        """Parse the judgment. Anything unparseable means "not an issue"."""
        content = _strip_fences(response.content.strip())

        try:
            result = Classification(**json.loads(content))
        except (json.JSONDecodeError, ValidationError, TypeError) as e:
            logger.warning(f"[CLASSIFIER] Unparseable judgment, treating as not an issue: {e}")
            logger.debug(f"[CLASSIFIER] Raw response: {content[:500]}")
            return NOT_AN_ISSUE

        logger.info(
            f"[CLASSIFIER] is_issue={result.is_issue}"
            + (f", target={result.target_name}" if result.is_issue else "")
        )
        return result
