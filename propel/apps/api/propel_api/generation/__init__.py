"""Text-generation provider adapter."""

from propel_api.generation.provider import (
    DEFAULT_PROMPT,
    GenerationResult,
    TextGenerator,
    get_text_generator,
    normalize_prompt,
    stub_text,
)

__all__ = [
    "DEFAULT_PROMPT",
    "GenerationResult",
    "TextGenerator",
    "get_text_generator",
    "normalize_prompt",
    "stub_text",
]
