import json

from conftest import FakeRouter, judgment_response, text_response
from docrelay.agents.classifier import ClassifierAgent

TARGETS = ["モノハブ", "推し活"]

ISSUE = {
    "is_issue": True,
    "target_name": "モノハブ",
    "title": "ログインできない",
    "body": "iPhoneでログインボタンが反応しない",
    "auxiliary_instruction": "ログインボタンのタップ判定を修正してください",
    "confirm_message": "GitHubにIssueを作成しますか？\n\nアプリ: モノハブ\n内容: ログインできない",
}


def test_issue_judgment_is_parsed():
    router = FakeRouter([judgment_response(**ISSUE)])

    result = ClassifierAgent(router, TARGETS).classify("モノハブでログインできない")

    assert result.is_issue
    assert result.target_name == "モノハブ"
    assert result.title == "ログインできない"
    assert result.confirm_message.startswith("GitHubにIssueを作成しますか？")


def test_prompt_lists_targets_and_requests_json():
    router = FakeRouter([judgment_response(is_issue=False)])

    ClassifierAgent(router, TARGETS, max_tokens=512).classify("今日の予定は？")

    call = router.calls[0]
    assert call["role"] == "classifier"
    assert call["response_format"] == {"type": "json_object"}
    assert call["max_tokens"] == 512
    [message] = call["messages"]
    assert message["role"] == "user"
    assert "- モノハブ\n- 推し活" in message["content"]
    assert message["content"].endswith("ユーザーメッセージ: 今日の予定は？")


def test_fenced_json_is_accepted():
    fenced = "```json\n" + json.dumps(ISSUE, ensure_ascii=False) + "\n```"
    router = FakeRouter([text_response(fenced)])

    assert ClassifierAgent(router, TARGETS).classify("x").is_issue


def test_unparseable_output_means_not_an_issue():
    for raw in ["はい、これはIssueです", "[1, 2]", "null", ""]:
        router = FakeRouter([text_response(raw)])
        assert ClassifierAgent(router, TARGETS).classify("x").is_issue is False


def test_issue_without_required_fields_means_not_an_issue():
    router = FakeRouter([judgment_response(is_issue=True, target_name="モノハブ")])

    assert ClassifierAgent(router, TARGETS).classify("x").is_issue is False
