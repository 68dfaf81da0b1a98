"""
DOCRELAY ← Notion Integration

Thin REST client for the block endpoints, plus the two roles the
relay needs on top of it:

  DocumentReader   — pages through the page's children → DocumentUnits
  DocumentMutator  — append / replace / delete blocks

Errors are not handled here. Reads propagate to the turn; mutation
failures are turned into strings by the editor's tool executor.
"""

from __future__ import annotations

from typing import Any

import httpx
from loguru import logger

from docrelay.config_loader import NotionConfig
from docrelay.snapshot import RICH_TEXT_KINDS, BlockKind, DocumentUnit, block_to_unit


class DocumentError(Exception):
    pass


def _text_run(text: str) -> list[dict[str, Any]]:
    return [{"type": "text", "text": {"content": text}}]


class NotionClient:
    """Block endpoints of the Notion REST API."""

    def __init__(
        self,
        token: str,
        config: NotionConfig,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self._http = httpx.Client(
            base_url=config.api_base,
            headers={
                "Authorization": f"Bearer {token}",
                "Notion-Version": config.version,
                "Content-Type": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    def list_children(
        self, block_id: str, start_cursor: str | None = None, page_size: int = 100
    ) -> dict[str, Any]:
        params: dict[str, Any] = {"page_size": page_size}
        if start_cursor:
            params["start_cursor"] = start_cursor
        return self._request("GET", f"/blocks/{block_id}/children", params=params)

    def append_children(self, block_id: str, children: list[dict[str, Any]]) -> dict[str, Any]:
        return self._request("PATCH", f"/blocks/{block_id}/children", json={"children": children})

    def retrieve_block(self, block_id: str) -> dict[str, Any]:
        return self._request("GET", f"/blocks/{block_id}")

    def update_block(self, block_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        return self._request("PATCH", f"/blocks/{block_id}", json=payload)

    def delete_block(self, block_id: str) -> dict[str, Any]:
        return self._request("DELETE", f"/blocks/{block_id}")

    def close(self) -> None:
        self._http.close()

    def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        response = self._http.request(method, path, **kwargs)
        response.raise_for_status()
        return response.json()


def page_url(page_id: str) -> str:
    return f"https://www.notion.so/{page_id.replace('-', '')}"


class DocumentReader:
    """Fetches the complete, ordered content of one page."""

    def __init__(self, client: NotionClient, page_id: str, page_size: int = 100):
        self.client = client
        self.page_id = page_id
        self.page_size = page_size

    def fetch_snapshot(self) -> list[DocumentUnit]:
        """Follow `has_more` / `next_cursor` until the store reports no more pages."""
        units: list[DocumentUnit] = []
        cursor: str | None = None
        pages = 0

        while True:
            data = self.client.list_children(self.page_id, start_cursor=cursor, page_size=self.page_size)
            pages += 1
            units.extend(block_to_unit(block) for block in data.get("results", []))

            cursor = data.get("next_cursor") if data.get("has_more") else None
            if not cursor:
                break

        logger.debug(f"[NOTION] Snapshot fetched — {len(units)} blocks in {pages} page(s)")
        return units


class DocumentMutator:
    """Applies edits to the page. No dedup, no concurrency token."""

    def __init__(self, client: NotionClient, page_id: str):
        self.client = client
        self.page_id = page_id

    @property
    def page_url(self) -> str:
        return page_url(self.page_id)

    def append(self, texts: list[str]) -> None:
        """Append one paragraph block per string, in order."""
        children = [
            {
                "object": "block",
                "type": BlockKind.PARAGRAPH.value,
                BlockKind.PARAGRAPH.value: {"rich_text": _text_run(text)},
            }
            for text in texts
        ]
        self.client.append_children(self.page_id, children)
        logger.info(f"[NOTION] Appended {len(children)} block(s)")

    def replace(self, unit_id: str, text: str) -> None:
        """
        Replace a block's text. The block is read first because each kind
        nests its rich_text under its own key.
        """
        block = self.client.retrieve_block(unit_id)
        kind = block.get("type", "")
        if BlockKind.of(kind) not in RICH_TEXT_KINDS:
            raise DocumentError(f"Block {unit_id} of type '{kind}' has no text to update")

        self.client.update_block(unit_id, {kind: {"rich_text": _text_run(text)}})
        logger.info(f"[NOTION] Updated block {unit_id} ({kind})")

    def delete(self, unit_id: str) -> None:
        self.client.delete_block(unit_id)
        logger.info(f"[NOTION] Deleted block {unit_id}")
