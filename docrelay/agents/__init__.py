"""
DOCRELAY agents.

Two agents share the router: the classifier decides whether a message
is an issue request, the editor answers or edits the Notion page.
Neither keeps state between turns.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel

from docrelay.router import Router, RouterResponse


class AgentContext(BaseModel):
    """One inbound message and what the agent needs to answer it."""
    user_id: str
    message: str
    document: str = ""  # rendered snapshot, editor only


class BaseAgent(ABC):
    """Prompt in, one model call, parsed result out. `role` picks the model."""

    role: str = "unknown"
    system_prompt: str = ""

    def __init__(self, router: Router):
        self.router = router

    def run(self, context: AgentContext, **kwargs) -> Any:
        response = self.router.complete(
            role=self.role,
            messages=self.build_messages(context),
            **kwargs,
        )
        return self.parse_response(response, context)

    @abstractmethod
    def build_messages(self, context: AgentContext) -> list[dict[str, Any]]:
        ...

    @abstractmethod
    def parse_response(self, response: RouterResponse, context: AgentContext) -> Any:
        ...

    def _system_msg(self) -> dict[str, str]:
        return {"role": "system", "content": self.system_prompt}

    def _user_msg(self, content: str) -> dict[str, str]:
        return {"role": "user", "content": content}
