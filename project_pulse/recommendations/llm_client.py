"""
Template generators for recommendation drafts.

A ``TemplateGenerator`` is any callable ``(template_key, variables) -> str``.
The generator module calls it for a bounded number of top recommendations and
falls back to the deterministic template on any failure.

``LLMTemplateGenerator`` drafts via an OpenAI-compatible chat completions
endpoint. It does NOT retry; a failed call raises ``TemplateGenerationError``
and the caller falls back.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Protocol

import httpx

from project_pulse.config import LLMConfig
from project_pulse.errors import TemplateGenerationError
from project_pulse.recommendations.templates import render_template

logger = logging.getLogger(__name__)

_SYSTEM_PROMPT = (
    "You rewrite short client-facing project messages. Keep every number and name "
    "from the draft, keep it under 150 words, and return only the message text."
)


class TemplateGenerator(Protocol):
    def __call__(self, template_key: str, variables: dict[str, Any]) -> str: ...


class LLMTemplateGenerator:
    """Draft recommendation messages with an OpenAI-compatible chat endpoint.

    Args:
        config: LLM section of ``AppConfig``. ``api_key`` is required.
    """

    def __init__(self, config: LLMConfig) -> None:
        if not config.api_key:
            raise TemplateGenerationError(
                "LLM drafting is enabled but no API key is configured. "
                "Set PROJECT_PULSE_LLM_API_KEY in .env."
            )
        self.config = config

    def __call__(self, template_key: str, variables: dict[str, Any]) -> str:
        draft = render_template(template_key, variables)
        if not draft:
            raise TemplateGenerationError(f"Unknown template key '{template_key}'.")

        url = f"{self.config.base_url.rstrip('/')}/chat/completions"
        body = {
            "model": self.config.model,
            "max_tokens": self.config.max_tokens,
            "temperature": 0.2,
            "messages": [
                {"role": "system", "content": _SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": (
                        f"Template: {template_key}\n"
                        f"Variables: {json.dumps(variables, default=str)}\n\n"
                        f"Draft:\n{draft}"
                    ),
                },
            ],
        }
        try:
            resp = httpx.post(
                url,
                headers={"Authorization": f"Bearer {self.config.api_key}"},
                json=body,
                timeout=self.config.timeout_seconds,
            )
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise TemplateGenerationError(f"Drafting '{template_key}' failed: {exc}") from exc

        try:
            text = str(data["choices"][0]["message"]["content"] or "").strip()
        except (KeyError, IndexError, TypeError) as exc:
            raise TemplateGenerationError(
                f"Unexpected chat completion payload for '{template_key}'."
            ) from exc

        logger.debug("Drafted '%s' via %s (%d chars)", template_key, self.config.model, len(text))
        return text


def build_template_generator(config: LLMConfig) -> LLMTemplateGenerator | None:
    """Return an LLM generator when drafting is enabled, else ``None``."""
    if not config.enabled:
        return None
    return LLMTemplateGenerator(config)
