"""
DOCRELAY Router — Vendor-Agnostic Model Abstraction

Routes agent calls through LiteLLM so agents never know
which vendor is backing them. Handles usage tracking,
retries, tool-call normalization, and structured logging.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Any

import litellm
from loguru import logger
from pydantic import BaseModel, Field
from tenacity import retry, stop_after_attempt, wait_exponential

from docrelay.config_loader import RelayConfig


# ---------------------------------------------------------------------------
# Usage Tracking
# ---------------------------------------------------------------------------

@dataclass
class UsageRecord:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    estimated_cost: float = 0.0
    call_count: int = 0


@dataclass
class UsageTracker:
    """Tracks token + dollar spend for the lifetime of the process.

    Webhook batches call the router from several threads at once,
    so every update happens under a lock.
    """
    usage: UsageRecord = field(default_factory=UsageRecord)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def record(self, response: Any) -> float:
        """Record usage from a LiteLLM response.

        Args:
            response (Any): The response object returned by LiteLLM.

        Returns:
            float: The estimated cost of this single response.
        """
        cost = 0.0
        try:
            cost = litellm.completion_cost(completion_response=response)
        except Exception:
            # Unknown models have no price table entry.
            cost = 0.0

        usage = getattr(response, "usage", None)
        with self._lock:
            if usage:
                self.usage.prompt_tokens += getattr(usage, "prompt_tokens", 0) or 0
                self.usage.completion_tokens += getattr(usage, "completion_tokens", 0) or 0
                self.usage.total_tokens += getattr(usage, "total_tokens", 0) or 0
            self.usage.estimated_cost += cost
            self.usage.call_count += 1
        return cost

    def summary(self) -> dict:
        """Generate a summary of usage so far.

        Returns:
            dict: Total tokens used, estimated cost and call count.
        """
        with self._lock:
            return {
                "total_tokens": self.usage.total_tokens,
                "estimated_cost": round(self.usage.estimated_cost, 4),
                "call_count": self.usage.call_count,
            }


# ---------------------------------------------------------------------------
# Kwargs helpers
# ---------------------------------------------------------------------------

def _build_kwargs(
    model: str,
    messages: list[dict[str, Any]],
    temperature: float,
    max_tokens: int,
    tools: list[dict[str, Any]] | None,
    response_format: dict | None,
) -> dict[str, Any]:
    """Build LiteLLM kwargs, leaving out optional params that were not requested."""
    kwargs: dict[str, Any] = {
        "model": model,
        "messages": messages,
        "max_tokens": max_tokens,
        "temperature": temperature,
    }

    if tools:
        kwargs["tools"] = tools

    if response_format:
        kwargs["response_format"] = response_format

    return kwargs


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------

class ToolCall(BaseModel):
    """A single operation requested by the model."""
    id: str
    name: str
    arguments: str = "{}"  # raw JSON string, decoded by the caller

    def to_message(self) -> dict[str, Any]:
        """Render in the OpenAI chat-history shape LiteLLM expects back."""
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }


class RouterResponse(BaseModel):
    content: str
    model: str
    tool_calls: list[ToolCall] = Field(default_factory=list)
    finish_reason: str = "stop"
    tokens_used: int = 0
    cost: float = 0.0
    latency_ms: int = 0

    @property
    def requests_tools(self) -> bool:
        """True when the model stopped in order to have operations executed."""
        return self.finish_reason == "tool_calls" and bool(self.tool_calls)


def _extract_tool_calls(message: Any) -> list[ToolCall]:
    raw_calls = getattr(message, "tool_calls", None) or []
    calls = []
    for tc in raw_calls:
        function = tc.function
        calls.append(ToolCall(
            id=tc.id,
            name=function.name,
            arguments=function.arguments or "{}",
        ))
    return calls


class Router:
    """
    Vendor-agnostic model router.

    Agents call `router.complete(role, messages)`.
    The router resolves the model, records usage, and returns structured output.
    """

    def __init__(self, config: RelayConfig):
        self.config = config
        self.usage = UsageTracker()
        self._role_model_map = {
            "editor": config.routing.editor,
            "classifier": config.routing.classifier,
        }

        litellm.suppress_debug_info = True

    def resolve_model(self, role: str) -> str:
        """Resolve agent role to a specific model string.

        Args:
            role (str): The agent role name ('editor' or 'classifier').

        Returns:
            str: The model string associated with the given role.

        Raises:
            ValueError: If the provided role is not found in the role-to-model mapping.
        """
        model = self._role_model_map.get(role)
        if not model:
            raise ValueError(f"Unknown agent role: {role}. Known: {list(self._role_model_map)}")
        return model

    @retry(stop=stop_after_attempt(3), wait=wait_exponential(min=1, max=10), reraise=True)
    def complete(
        self,
        role: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        temperature: float = 0.2,
        max_tokens: int = 2048,
        response_format: dict | None = None,
    ) -> RouterResponse:
        """Send a completion request through LiteLLM.

        Args:
            role (str): Agent role name (editor, classifier).
            messages (list[dict[str, Any]]): Chat messages, including assistant
                turns with tool calls and tool-result turns.
            tools (list[dict[str, Any]] | None, optional): OpenAI-style tool schemas.
            temperature (float, optional): Sampling temperature. Defaults to 0.2.
            max_tokens (int, optional): Max response tokens. Defaults to 2048.
            response_format (dict | None, optional): Optional structured-output hint.

        Returns:
            RouterResponse: Text content, requested tool calls, the stop
                indicator, and usage for this call.
        """
        model = self.resolve_model(role)
        start = time.monotonic()

        logger.debug(f"[ROUTER] {role} → {model} ({len(messages)} messages)")

        kwargs = _build_kwargs(model, messages, temperature, max_tokens, tools, response_format)

        response = litellm.completion(**kwargs)
        elapsed_ms = int((time.monotonic() - start) * 1000)

        cost = self.usage.record(response)

        choice = response.choices[0]
        message = choice.message
        tool_calls = _extract_tool_calls(message)

        logger.debug(
            f"[ROUTER] {role} complete — "
            f"finish={choice.finish_reason}, "
            f"{len(tool_calls)} tool calls, "
            f"${cost:.4f}, "
            f"{elapsed_ms}ms"
        )

        usage = getattr(response, "usage", None)
        return RouterResponse(
            content=message.content or "",
            model=model,
            tool_calls=tool_calls,
            finish_reason=choice.finish_reason or "stop",
            tokens_used=getattr(usage, "total_tokens", 0) or 0,
            cost=cost,
            latency_ms=elapsed_ms,
        )
