"""Text-generation provider (OpenAI chat completions) with stub fallback.

A missing API key or any provider failure yields a deterministic stub text
instead of an error. The caller still counts the generation: the user got a
response, and quota accounting does not depend on provider health.
"""

from __future__ import annotations

import logging
from typing import Optional

import openai
from openai import AsyncOpenAI
from pydantic import BaseModel

from propel_api.config.env import get_openai_api_key, get_openai_model

logger = logging.getLogger(__name__)

DEFAULT_PROMPT = "Give a short onboarding message for my SaaS dashboard. Be friendly."
MAX_TOKENS = 200
TEMPERATURE = 0.7
TIMEOUT_SECONDS = 30.0


class GenerationResult(BaseModel):
    text: str
    degraded: bool = False  # True when the stub fallback produced ``text``


def stub_text(prompt: str) -> str:
    return "\n".join([
        "AI call failed or OPENAI_API_KEY missing.",
        "",
        "Stub fallback:",
        f'"{prompt}"',
    ])


def normalize_prompt(prompt: Optional[str]) -> str:
    """Trimmed prompt, or the default onboarding prompt when blank."""
    if prompt and prompt.strip():
        return prompt.strip()
    return DEFAULT_PROMPT


class TextGenerator:
    """OpenAI-backed generator. ``client`` is None when no API key is configured."""

    def __init__(self, client: Optional[AsyncOpenAI], model_name: str = "gpt-4o-mini"):
        self._client = client
        self._model_name = model_name

    async def generate(self, prompt: str) -> GenerationResult:
        if self._client is None:
            logger.warning("TEXT_PROVIDER_NOT_CONFIGURED")
            return GenerationResult(text=stub_text(prompt), degraded=True)

        try:
            response = await self._client.chat.completions.create(
                model=self._model_name,
                messages=[{"role": "user", "content": prompt}],
                max_tokens=MAX_TOKENS,
                temperature=TEMPERATURE,
            )
        except openai.OpenAIError as exc:
            logger.error(
                "TEXT_PROVIDER_FAILED",
                extra={"provider": "openai", "error_type": type(exc).__name__},
            )
            return GenerationResult(text=stub_text(prompt), degraded=True)

        content = (response.choices[0].message.content or "").strip() if response.choices else ""
        return GenerationResult(text=content or "No output")


_generator: Optional[TextGenerator] = None


def get_text_generator() -> TextGenerator:
    """Process-wide generator (one HTTP connection pool to the provider)."""
    global _generator
    if _generator is None:
        api_key = get_openai_api_key()
        client = AsyncOpenAI(api_key=api_key, timeout=TIMEOUT_SECONDS) if api_key else None
        _generator = TextGenerator(client, model_name=get_openai_model())
    return _generator
