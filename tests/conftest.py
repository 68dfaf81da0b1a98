import copy
import json
from typing import Any

import pytest

from docrelay.router import RouterResponse, ToolCall
from docrelay.snapshot import DocumentUnit


class FakeRouter:
    """Returns scripted RouterResponses and records every call."""

    def __init__(self, responses: list[RouterResponse]):
        self.responses = list(responses)
        self.calls: list[dict[str, Any]] = []

    def complete(self, role: str, messages: list[dict[str, Any]], **kwargs) -> RouterResponse:
        self.calls.append({"role": role, "messages": copy.deepcopy(messages), **kwargs})
        if not self.responses:
            raise AssertionError("FakeRouter ran out of scripted responses")
        return self.responses.pop(0)


class FakeDocument:
    page_url = "https://www.notion.so/abc123"

    def __init__(self, fail_with: Exception | None = None):
        self.calls: list[tuple] = []
        self.fail_with = fail_with

    def append(self, texts: list[str]) -> None:
        self.calls.append(("append", list(texts)))
        if self.fail_with:
            raise self.fail_with

    def replace(self, unit_id: str, text: str) -> None:
        self.calls.append(("replace", unit_id, text))
        if self.fail_with:
            raise self.fail_with

    def delete(self, unit_id: str) -> None:
        self.calls.append(("delete", unit_id))
        if self.fail_with:
            raise self.fail_with


class FakeReader:
    def __init__(self, units: list[DocumentUnit] | None = None):
        self.units = units or []
        self.fetches = 0

    def fetch_snapshot(self) -> list[DocumentUnit]:
        self.fetches += 1
        return list(self.units)


class FakeFiler:
    def __init__(self, url: str = "https://github.com/marutamura/monohub/issues/7", fail_with: Exception | None = None):
        self.url = url
        self.fail_with = fail_with
        self.calls: list[tuple[str, str, str]] = []

    def file(self, repository: str, title: str, body: str) -> str:
        self.calls.append((repository, title, body))
        if self.fail_with:
            raise self.fail_with
        return self.url


def text_response(content: str) -> RouterResponse:
    return RouterResponse(content=content, model="fake", finish_reason="stop")


def tool_response(*calls: tuple[str, str, dict], content: str = "") -> RouterResponse:
    return RouterResponse(
        content=content,
        model="fake",
        finish_reason="tool_calls",
        tool_calls=[ToolCall(id=cid, name=name, arguments=json.dumps(args)) for cid, name, args in calls],
    )


def judgment_response(**fields) -> RouterResponse:
    return text_response(json.dumps(fields, ensure_ascii=False))


@pytest.fixture
def document():
    return FakeDocument()


@pytest.fixture
def reader():
    return FakeReader([
        DocumentUnit(id="b1", kind="heading_1", text="やること"),
        DocumentUnit(id="b2", kind="to_do", text="[未完了] 看板を直す"),
    ])


@pytest.fixture
def filer():
    return FakeFiler()
