"""
Tests for project_pulse/recommendations/llm_client.py.

What we test
------------
LLMTemplateGenerator:
  - Refuses to construct without an API key.
  - Posts an OpenAI-style chat completion and returns the stripped content.
  - HTTP errors, malformed payloads and unknown template keys raise
    TemplateGenerationError.

build_template_generator():
  - Returns None when drafting is disabled.

No network: ``httpx.post`` is monkeypatched.
"""

from __future__ import annotations

import httpx
import pytest

from project_pulse.config import LLMConfig
from project_pulse.errors import TemplateGenerationError
from project_pulse.recommendations import llm_client
from project_pulse.recommendations.llm_client import (
    LLMTemplateGenerator,
    build_template_generator,
)
from project_pulse.recommendations.templates import WAITING_FOLLOW_UP

VARS = {"client_name": "Dana", "stage_name": "Design", "waiting_days": "3.0"}


# ── Helpers ───────────────────────────────────────────────────────────────────

def _config(**overrides) -> LLMConfig:
    params = dict(enabled=True, api_key="sk-test", base_url="https://llm.example.com/v1/")
    params.update(overrides)
    return LLMConfig(**params)


def _patch_post(monkeypatch, status: int = 200, payload=None, captured: dict | None = None):
    def fake_post(url, headers=None, json=None, timeout=None):
        if captured is not None:
            captured.update(url=url, headers=headers, json=json, timeout=timeout)
        return httpx.Response(status, json=payload, request=httpx.Request("POST", url))

    monkeypatch.setattr(llm_client.httpx, "post", fake_post)


def _completion(text) -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": text}}]}


# ── Construction ──────────────────────────────────────────────────────────────

class TestConstruction:
    def test_requires_api_key(self):
        with pytest.raises(TemplateGenerationError) as exc_info:
            LLMTemplateGenerator(_config(api_key=None))
        assert exc_info.value.code == "template_generation_failed"

    def test_disabled_returns_none(self):
        assert build_template_generator(LLMConfig()) is None

    def test_enabled_returns_generator(self):
        assert isinstance(build_template_generator(_config()), LLMTemplateGenerator)


# ── Calls ─────────────────────────────────────────────────────────────────────

class TestDrafting:
    def test_returns_stripped_content(self, monkeypatch):
        captured: dict = {}
        _patch_post(monkeypatch, payload=_completion("  Hello Dana  \n"), captured=captured)
        text = LLMTemplateGenerator(_config())(WAITING_FOLLOW_UP, VARS)
        assert text == "Hello Dana"
        assert captured["url"] == "https://llm.example.com/v1/chat/completions"
        assert captured["headers"]["Authorization"] == "Bearer sk-test"
        assert captured["json"]["model"] == "gpt-4o-mini"
        assert "Hi Dana," in captured["json"]["messages"][1]["content"]

    def test_http_error(self, monkeypatch):
        _patch_post(monkeypatch, status=500, payload={"error": "down"})
        with pytest.raises(TemplateGenerationError):
            LLMTemplateGenerator(_config())(WAITING_FOLLOW_UP, VARS)

    def test_malformed_payload(self, monkeypatch):
        _patch_post(monkeypatch, payload={"choices": []})
        with pytest.raises(TemplateGenerationError):
            LLMTemplateGenerator(_config())(WAITING_FOLLOW_UP, VARS)

    def test_null_content_is_empty(self, monkeypatch):
        _patch_post(monkeypatch, payload=_completion(None))
        assert LLMTemplateGenerator(_config())(WAITING_FOLLOW_UP, VARS) == ""

    def test_unknown_template_key(self, monkeypatch):
        _patch_post(monkeypatch, payload=_completion("unused"))
        with pytest.raises(TemplateGenerationError):
            LLMTemplateGenerator(_config())("nope", {})
