from __future__ import annotations

import httpx
import pytest

from nrft import ai_notes
from nrft.errors import ServiceUnavailableError

CONTEXT = {
    "patient_name": "길동",
    "age_group": "30대",
    "gender": "male",
    "scores": {"Sleep": 80, "Digestion": 100, "Energy": 75, "Stress": 95, "Immunity": 100},
    "health_type": "에너지 고갈형 (Burnout Fire)",
}


class _FakeResponse:
    def __init__(self, payload, status_code=200):
        self._payload = payload
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            request = httpx.Request("POST", "https://example.invalid")
            raise httpx.HTTPStatusError("error", request=request, response=httpx.Response(self.status_code, request=request))

    def json(self):
        return self._payload


def test_prompt_lists_scores_and_type():
    prompt = ai_notes.build_prompt(CONTEXT)
    assert "- 활력: 75" in prompt
    assert "에너지 고갈형 (Burnout Fire)" in prompt
    assert "길동" in prompt


def test_missing_key_is_unavailable(monkeypatch):
    monkeypatch.setattr("nrft.config.GEMINI_API_KEY", None)
    with pytest.raises(ServiceUnavailableError):
        ai_notes.generate_consultation_note(CONTEXT)


def test_generates_note_from_response(monkeypatch):
    monkeypatch.setattr("nrft.config.GEMINI_API_KEY", "test-key")
    calls = {}

    def fake_post(url, params=None, json=None, timeout=None):
        calls.update(url=url, params=params, timeout=timeout)
        return _FakeResponse({"candidates": [{"content": {"parts": [{"text": " 요즘 많이 지치셨죠. "}]}}]})

    monkeypatch.setattr(ai_notes.httpx, "post", fake_post)
    assert ai_notes.generate_consultation_note(CONTEXT) == "요즘 많이 지치셨죠."
    assert calls["params"] == {"key": "test-key"}
    assert calls["url"].endswith(":generateContent")


def test_empty_response_falls_back(monkeypatch):
    monkeypatch.setattr("nrft.config.GEMINI_API_KEY", "test-key")
    monkeypatch.setattr(ai_notes.httpx, "post", lambda *a, **k: _FakeResponse({"candidates": []}))
    assert ai_notes.generate_consultation_note(CONTEXT) == ai_notes.FALLBACK_NOTE


def test_http_error_is_unavailable(monkeypatch):
    monkeypatch.setattr("nrft.config.GEMINI_API_KEY", "test-key")
    monkeypatch.setattr(ai_notes.httpx, "post", lambda *a, **k: _FakeResponse({}, status_code=500))
    with pytest.raises(ServiceUnavailableError):
        ai_notes.generate_consultation_note(CONTEXT)
