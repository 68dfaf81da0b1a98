"""
DOCRELAY Snapshot — Notion blocks → prompt text

Each Notion block becomes a DocumentUnit with flattened text.
The formatter turns a list of units into the addressable
`[id] (kind) text` lines the editor agent reads every turn.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Callable

from pydantic import BaseModel

EMPTY_DOCUMENT = "(ページは空です)"
DIVIDER_TEXT = "---"
TODO_DONE = "完了"
TODO_OPEN = "未完了"


class BlockKind(str, Enum):
    PARAGRAPH = "paragraph"
    HEADING_1 = "heading_1"
    HEADING_2 = "heading_2"
    HEADING_3 = "heading_3"
    BULLETED_LIST_ITEM = "bulleted_list_item"
    NUMBERED_LIST_ITEM = "numbered_list_item"
    QUOTE = "quote"
    CALLOUT = "callout"
    TOGGLE = "toggle"
    TO_DO = "to_do"
    CODE = "code"
    DIVIDER = "divider"
    OTHER = "other"

    @classmethod
    def of(cls, block_type: str) -> "BlockKind":
        try:
            return cls(block_type)
        except ValueError:
            return cls.OTHER


# Kinds whose payload nests text under `<kind>.rich_text`. These are also
# the only kinds the mutator can rewrite.
RICH_TEXT_KINDS = frozenset({
    BlockKind.PARAGRAPH,
    BlockKind.HEADING_1,
    BlockKind.HEADING_2,
    BlockKind.HEADING_3,
    BlockKind.BULLETED_LIST_ITEM,
    BlockKind.NUMBERED_LIST_ITEM,
    BlockKind.QUOTE,
    BlockKind.CALLOUT,
    BlockKind.TOGGLE,
    BlockKind.TO_DO,
    BlockKind.CODE,
})


class DocumentUnit(BaseModel):
    """One addressable block of the page. `text` is derived, never authoritative."""
    id: str
    kind: str
    text: str


# ---------------------------------------------------------------------------
# Rendering rules, one per kind
# ---------------------------------------------------------------------------

def extract_text(rich_text: list[dict[str, Any]] | None) -> str:
    """Concatenate the plain_text runs of a Notion rich_text array."""
    return "".join(run.get("plain_text", "") for run in rich_text or [])


def _placeholder(block: dict[str, Any]) -> str:
    return f"({block.get('type', 'unknown')}ブロック)"


def _render_rich_text(block: dict[str, Any]) -> str:
    payload = block.get(block["type"]) or {}
    if payload.get("rich_text") is None:
        return _placeholder(block)
    return extract_text(payload["rich_text"])


def _render_to_do(block: dict[str, Any]) -> str:
    payload = block.get("to_do") or {}
    marker = TODO_DONE if payload.get("checked") else TODO_OPEN
    return f"[{marker}] {extract_text(payload.get('rich_text'))}"


def _render_divider(block: dict[str, Any]) -> str:
    return DIVIDER_TEXT


_RENDERERS: dict[BlockKind, Callable[[dict[str, Any]], str]] = {
    **{kind: _render_rich_text for kind in RICH_TEXT_KINDS},
    BlockKind.TO_DO: _render_to_do,
    BlockKind.DIVIDER: _render_divider,
    BlockKind.OTHER: _placeholder,
}


def block_to_unit(block: dict[str, Any]) -> DocumentUnit:
    """Convert a raw Notion block object into a DocumentUnit."""
    block_type = block.get("type", "unknown")
    render = _RENDERERS[BlockKind.of(block_type)]
    return DocumentUnit(id=block["id"], kind=block_type, text=render(block))


def format_snapshot(units: list[DocumentUnit]) -> str:
    """Render units as one `[id] (kind) text` line each, in order."""
    if not units:
        return EMPTY_DOCUMENT
    return "\n".join(f"[{u.id}] ({u.kind}) {u.text}" for u in units)
