"""Flashcard content generators: an OpenAI-compatible chat model and a template fallback."""

from __future__ import annotations

import json
import re
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError as PydanticValidationError

from packages.common.config import Settings, get_settings
from packages.common.exceptions import ConfigurationError, ContentGenerationError
from packages.common.logging import get_logger
from packages.srs.models import CardDraft

if TYPE_CHECKING:
    import openai

logger = get_logger(module=__name__)

# Shorter texts do not give a model enough to work with.
MIN_AI_CONTENT_LENGTH = 50
MAX_PROMPT_CONTENT = 3000

_QUESTION_RE = re.compile(r"[^.!?]+\?")
_SENTENCE_RE = re.compile(r"[^.!?]+[.!?]")
_DEFINITION_RE = re.compile(r"[^.!?]+ is [^.!?]+[.!?]")
_JSON_ARRAY_RE = re.compile(r"\[[\s\S]*\]")

_SYSTEM_PROMPT = (
    "You are an educational content AI that creates flashcard questions and answers "
    "from course material. Respond with valid JSON only."
)


def _question_formats(question: str) -> list[str]:
    return [
        f"Explain: {question}",
        f"Define in your own words: {question}",
        f'What is meant by "{question}"?',
        f'How would you describe "{question}" to someone new to this topic?',
    ]


def _answer_formats(answer: str) -> list[str]:
    return [
        answer,
        f"Simply put, {answer.lower()}",
        f"In technical terms, {answer}",
        f"The most accurate description would be: {answer}",
    ]


MAX_TEMPLATE_ALTERNATIVES = 4


class ContentGenerator(ABC):
    """Abstract base class for card content generators."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Identifier used in logs and the ``ai_generated`` flag."""
        ...

    @property
    def is_ai(self) -> bool:
        return False

    @abstractmethod
    async def generate_cards(self, text: str, title: str, max_count: int) -> list[CardDraft]:
        """Extract up to ``max_count`` question/answer pairs from ``text``.

        Raises:
            ContentGenerationError: The generator could not produce usable cards.
        """
        ...

    @abstractmethod
    async def generate_alternatives(
        self, question: str, answer: str, count: int
    ) -> list[CardDraft]:
        """Rephrase an existing card ``count`` ways."""
        ...


class TemplateContentGenerator(ContentGenerator):
    """Deterministic extraction from question sentences and "X is Y." definitions."""

    @property
    def name(self) -> str:
        return "template"

    async def generate_cards(self, text: str, title: str, max_count: int) -> list[CardDraft]:
        drafts: list[CardDraft] = []

        # A question sentence is answered by the sentence that follows it.
        for match in _QUESTION_RE.finditer(text):
            following = _SENTENCE_RE.search(text[match.end() :].strip())
            if following is None:
                continue
            question = match.group(0).strip()
            answer = following.group(0).strip()
            if question and answer:
                drafts.append(CardDraft(question=question, answer=answer, ai_generated=False))

        for match in _DEFINITION_RE.finditer(text):
            parts = match.group(0).split(" is ")
            if len(parts) != 2:
                continue
            term, definition = parts[0].strip(), parts[1].strip()
            if term and definition:
                drafts.append(
                    CardDraft(question=f"What is {term}?", answer=definition, ai_generated=False)
                )

        return drafts[:max_count]

    async def generate_alternatives(
        self, question: str, answer: str, count: int
    ) -> list[CardDraft]:
        questions = _question_formats(question)
        answers = _answer_formats(answer)
        return [
            CardDraft(question=questions[i], answer=answers[i], ai_generated=False)
            for i in range(min(count, MAX_TEMPLATE_ALTERNATIVES))
        ]


class OpenAIContentGenerator(ContentGenerator):
    """Chat-completions generator. Works with any OpenAI-compatible endpoint via ``base_url``."""

    def __init__(
        self,
        model: str = "gpt-4o-mini",
        base_url: str | None = None,
        timeout: float = 30.0,
    ) -> None:
        """Initialize the generator.

        Args:
            model: Chat model name (e.g. ``deepseek-chat`` with a DeepSeek base URL).
            base_url: Optional OpenAI-compatible API root.
            timeout: Per-request timeout in seconds.
        """
        self._model = model
        self._base_url = base_url
        self._timeout = timeout
        self._client: openai.AsyncOpenAI | None = None  # Lazy initialized

    @property
    def name(self) -> str:
        return f"openai/{self._model}"

    @property
    def is_ai(self) -> bool:
        return True

    def _get_client(self) -> Any:
        """Lazily initialize OpenAI client."""
        if self._client is None:
            try:
                import openai
            except ImportError as e:
                raise ConfigurationError(
                    "OpenAI package not installed. Install with: pip install 'memory-deck[openai]'"
                ) from e
            self._client = openai.AsyncOpenAI(base_url=self._base_url, timeout=self._timeout)
        return self._client

    async def _complete(self, prompt: str) -> str:
        client = self._get_client()
        import openai

        try:
            response = await client.chat.completions.create(
                model=self._model,
                messages=[
                    {"role": "system", "content": _SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                temperature=0.7,
                max_tokens=1000,
            )
        except openai.OpenAIError as exc:
            raise ContentGenerationError(
                f"Content generation request failed: {exc}",
                context={"model": self._model},
            ) from exc
        if not response.choices:
            raise ContentGenerationError("Empty completion", context={"model": self._model})
        return response.choices[0].message.content or ""

    def _parse_cards(self, raw: str) -> list[CardDraft]:
        """Parse a JSON array of {question, answer}, tolerating surrounding prose or fences."""
        match = _JSON_ARRAY_RE.search(raw)
        try:
            items = json.loads(match.group(0) if match else raw)
        except json.JSONDecodeError as exc:
            raise ContentGenerationError(
                "Model response is not valid JSON",
                context={"model": self._model},
            ) from exc
        if not isinstance(items, list):
            raise ContentGenerationError("Model response is not a JSON array")

        drafts: list[CardDraft] = []
        for item in items:
            if not isinstance(item, dict):
                continue
            try:
                drafts.append(
                    CardDraft(
                        question=item.get("question", ""),
                        answer=item.get("answer", ""),
                        ai_generated=True,
                    )
                )
            except PydanticValidationError:
                logger.debug("generated_card_discarded", item=item)
        return drafts

    async def generate_cards(self, text: str, title: str, max_count: int) -> list[CardDraft]:
        if len(text) < MIN_AI_CONTENT_LENGTH:
            raise ContentGenerationError(
                "Content too short for generation",
                context={"title": title, "length": len(text)},
            )
        prompt = (
            "You are an expert educator creating flashcards to help students learn.\n"
            f"Generate {max_count} high-quality flashcards from the following course content.\n"
            "Each flashcard should have a question and answer format that tests key concepts.\n"
            "Make questions that require understanding, not just memorization.\n"
            'Format your response as JSON array: [{"question": "...", "answer": "..."}]\n'
            "Don't include any other text in your response, just the JSON array.\n\n"
            f"Content title: {title}\n"
            f"Content: {text[:MAX_PROMPT_CONTENT]}"
        )
        drafts = self._parse_cards(await self._complete(prompt))
        if not drafts:
            raise ContentGenerationError("Model returned no usable cards", context={"title": title})
        return drafts[:max_count]

    async def generate_alternatives(
        self, question: str, answer: str, count: int
    ) -> list[CardDraft]:
        prompt = (
            f"Rewrite the following flashcard {count} different ways. Keep the meaning, "
            "vary the wording and perspective.\n"
            'Format your response as JSON array: [{"question": "...", "answer": "..."}]\n'
            "Don't include any other text in your response, just the JSON array.\n\n"
            f"Question: {question}\n"
            f"Answer: {answer}"
        )
        drafts = self._parse_cards(await self._complete(prompt))
        if not drafts:
            raise ContentGenerationError("Model returned no usable alternatives")
        return drafts[:count]


def get_content_generator(settings: Settings | None = None) -> ContentGenerator:
    """Factory function to create a content generator from settings.

    Args:
        settings: Application settings. If None, uses default settings.

    Returns:
        Configured content generator.
    """
    if settings is None:
        settings = get_settings()

    if settings.content_provider == "openai":
        return OpenAIContentGenerator(
            model=settings.content_model,
            base_url=settings.content_base_url,
            timeout=settings.content_timeout_seconds,
        )
    return TemplateContentGenerator()
