"""Generation Prompts."""

from .templates import (
    GENERATION_SYSTEM_PROMPT,
    build_generation_prompt,
    build_quiz_request_prompt,
)

__all__ = ["GENERATION_SYSTEM_PROMPT", "build_generation_prompt", "build_quiz_request_prompt"]
