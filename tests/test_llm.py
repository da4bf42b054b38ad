import pytest
import requests

from adaptation.narrative import build_narrative_messages
from services import llm


class FakeResponse:
    def __init__(self, status_code, payload):
        self.status_code = status_code
        self._payload = payload
        self.text = str(payload)

    def json(self):
        return self._payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


def test_system_prompt_is_merged_into_user_turn():
    merged = llm.merge_system_messages([
        {"role": "system", "content": "Be brief."},
        {"role": "user", "content": "Explain my plan."},
    ])

    assert [m["role"] for m in merged] == ["user"]
    assert "Be brief." in merged[0]["content"]
    assert merged[0]["content"].strip().endswith("Explain my plan.")


def test_call_chat_returns_message_content(monkeypatch):
    sent = {}

    def fake_post(url, headers, json, timeout):
        sent.update(json)
        return FakeResponse(200, {"choices": [{"message": {"content": "  Take it easy this week.  "}}]})

    monkeypatch.setattr(llm.requests, "post", fake_post)

    assert llm.call_chat([{"role": "user", "content": "hi"}]) == "Take it easy this week."
    assert sent["messages"] == [{"role": "user", "content": "hi"}]


def test_call_chat_raises_on_http_error(monkeypatch):
    monkeypatch.setattr(llm.requests, "post", lambda *args, **kwargs: FakeResponse(503, {"error": "busy"}))

    with pytest.raises(requests.HTTPError):
        llm.call_chat([{"role": "user", "content": "hi"}])


def test_narrative_prompt_carries_computed_numbers(make_recommendation, neutral_scores):
    messages = build_narrative_messages([make_recommendation()], neutral_scores)

    assert messages[0]["role"] == "system"
    assert "Recovery index : 50 %" in messages[1]["content"]
    assert "[medium] frequency for 7 days" in messages[1]["content"]


def test_call_chat_rejects_empty_content(monkeypatch):
    monkeypatch.setattr(
        llm.requests,
        "post",
        lambda *args, **kwargs: FakeResponse(200, {"choices": [{"message": {"content": None}}]}),
    )

    with pytest.raises(ValueError):
        llm.call_chat([{"role": "user", "content": "hi"}])
