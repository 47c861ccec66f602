"""Flashcard content generation."""

from packages.content.generator import (
    ContentGenerator,
    OpenAIContentGenerator,
    TemplateContentGenerator,
    get_content_generator,
)

__all__ = [
    "ContentGenerator",
    "OpenAIContentGenerator",
    "TemplateContentGenerator",
    "get_content_generator",
]
