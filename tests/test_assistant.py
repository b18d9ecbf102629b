"""
Unit tests for the AI assistant and translation helpers.
"""

import pytest
import requests

from medportal import translate
from medportal.assistant import (
    FALLBACK_ANSWER,
    answer_question,
    build_chat_prompt,
    generate_health_score,
    parse_health_score,
    structure_notes,
)


# ── Helpers ──────────────────────────────────────────────────────────

class FakeLLMResponse:
    def __init__(self, content: str):
        self.content = content


class FakeLLM:
    def __init__(self, content: str = "", error: Exception = None):
        self._content = content
        self._error = error
        self.messages = None

    def invoke(self, messages):
        self.messages = messages
        if self._error:
            raise self._error
        return FakeLLMResponse(self._content)


class FakeHTTPResponse:
    def __init__(self, status_code, payload=None, text=""):
        self.status_code = status_code
        self.ok = 200 <= status_code < 300
        self._payload = payload or {}
        self.text = text

    def json(self):
        return self._payload


# ── Tests: structure_notes ───────────────────────────────────────────

def test_structure_notes_sends_notes_and_returns_text():
    llm = FakeLLM("## Subjective\nHeadache for 2 days\n")
    out = structure_notes(llm, "headache 2 days, BP 140/90")
    assert out.startswith("## Subjective")
    assert "SOAP" in llm.messages[0].content
    assert "BP 140/90" in llm.messages[1].content


def test_structure_notes_rejects_blank():
    with pytest.raises(ValueError):
        structure_notes(FakeLLM("x"), "   ")


def test_structure_notes_rejects_non_text():
    with pytest.raises(ValueError, match="non-empty text"):
        structure_notes(FakeLLM("x"), 42)


# ── Tests: answer_question ───────────────────────────────────────────

def test_build_chat_prompt_with_and_without_records():
    with_records = build_chat_prompt("How is my BP?", "--- Medical Record 1 ---", "User: hi", "Hindi")
    assert "PATIENT MEDICAL RECORDS" in with_records
    assert "Previous Conversation:\nUser: hi" in with_records
    assert with_records.endswith("in Hindi:")

    without = build_chat_prompt("Hi", "")
    assert "no medical records on file" in without
    assert "Previous Conversation" not in without


def test_answer_question_returns_model_text():
    llm = FakeLLM("Your BP looks normal. Please consult your doctor.")
    assert "normal" in answer_question(llm, "How is my BP?", "ctx")


def test_answer_question_falls_back_on_model_error(capsys):
    llm = FakeLLM(error=RuntimeError("timeout"))
    assert answer_question(llm, "Hello?") == FALLBACK_ANSWER
    assert "[WARN]" in capsys.readouterr().err


def test_answer_question_rejects_blank():
    with pytest.raises(ValueError):
        answer_question(FakeLLM("x"), "")


def test_answer_question_rejects_non_text():
    with pytest.raises(ValueError, match="non-empty text"):
        answer_question(FakeLLM("x"), {"q": "hi"})


# ── Tests: health score ──────────────────────────────────────────────

def test_parse_health_score_strips_fences_and_clamps():
    data = parse_health_score('```json\n{"score": 130, "analysis": "ok", "summary": "s"}\n```')
    assert data["score"] == 100
    assert data["analysis"] == "ok"
    assert data["vitals_analysis"] is None


def test_parse_health_score_keeps_free_text_reply(capsys):
    data = parse_health_score("Your score is 80")
    assert data == {
        "score": None,
        "analysis": "Your score is 80",
        "summary": "Analysis generated",
        "vitals_analysis": None,
    }
    assert "[WARN]" in capsys.readouterr().err


def test_parse_health_score_non_object_reply():
    data = parse_health_score("[80, 90]")
    assert data["score"] is None
    assert data["analysis"] == "[80, 90]"


def test_generate_health_score_without_records_skips_llm():
    llm = FakeLLM(error=AssertionError("should not be called"))
    data = generate_health_score(llm, "")
    assert data["score"] is None
    assert "No medical records" in data["analysis"]


def test_generate_health_score_calls_llm():
    llm = FakeLLM('{"score": 82.4, "analysis": "Good", "summary": "Stable", "vitals_analysis": "Normal HR"}')
    data = generate_health_score(llm, "--- Medical Record 1 ---", language="Tamil")
    assert data["score"] == 82
    assert data["vitals_analysis"] == "Normal HR"
    assert "Tamil" in llm.messages[0].content


# ── Tests: translate_text ────────────────────────────────────────────

def test_translate_english_is_passthrough():
    assert translate.translate_text("hello", "English") == "hello"
    assert translate.translate_text("hello", "Klingon") == "hello"


def test_translate_without_key_returns_none(monkeypatch):
    monkeypatch.delenv("SARVAM_API_KEY", raising=False)
    assert translate.translate_text("hello", "Hindi") is None


def test_translate_success(monkeypatch):
    monkeypatch.setenv("SARVAM_API_KEY", "k")
    calls = []

    def fake_post(url, headers=None, json=None, timeout=None):
        calls.append(json)
        return FakeHTTPResponse(200, {"translated_text": "namaste"})

    monkeypatch.setattr(translate.requests, "post", fake_post)
    assert translate.translate_text("hello", "Hindi") == "namaste"
    assert calls[0]["target_language_code"] == "hi-IN"


def test_translate_api_error_and_network_error(monkeypatch):
    monkeypatch.setenv("SARVAM_API_KEY", "k")
    monkeypatch.setattr(translate.requests, "post",
                        lambda *a, **kw: FakeHTTPResponse(500, text="boom"))
    assert translate.translate_text("hello", "Tamil") is None

    def raise_conn(*a, **kw):
        raise requests.ConnectionError("down")

    monkeypatch.setattr(translate.requests, "post", raise_conn)
    assert translate.translate_text("hello", "Tamil") is None
