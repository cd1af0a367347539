"""
AI Service for generating flashcards and quiz questions using Anthropic Claude.
"""
import asyncio
import json
import re
import time

import anthropic
from pydantic import ValidationError

from studyforge.core.config import settings
from studyforge.core.logging_config import get_logger
from studyforge.schemas.generation import (
    GeneratedContent,
    GeneratedFlashcard,
    GeneratedQuizQuestion,
)

logger = get_logger(__name__)

FLASHCARD_SYSTEM_PROMPT = (
    "You are an expert educator. Create flashcards from the provided text. "
    "Generate 5-12 high-quality flashcards with clear questions and concise answers. "
    "Respond with a single JSON object and nothing else, in this format: "
    '{"flashcards": [{"question": "...", "answer": "..."}]}'
)

QUIZ_SYSTEM_PROMPT = (
    "You are an expert educator. Create multiple choice quiz questions from the provided text. "
    "Generate 5-8 high-quality questions with exactly 4 options each. correctAnswer is the "
    "zero-based index (0-3) of the right option. "
    "Respond with a single JSON object and nothing else, in this format: "
    '{"questions": [{"question": "...", "options": ["A", "B", "C", "D"], "correctAnswer": 0}]}'
)


class ContentGenerationError(Exception):
    """The AI service could not be reached or refused the request."""
    pass


def get_anthropic_client() -> anthropic.AsyncAnthropic:
    """Get configured async Anthropic client."""
    if not settings.anthropic_api_key:
        logger.error("Anthropic API key not configured")
        raise ContentGenerationError("ANTHROPIC_API_KEY not configured")
    return anthropic.AsyncAnthropic(api_key=settings.anthropic_api_key)


def strip_json_fences(text: str) -> str:
    """Strip markdown code fences (```json ... ```) from AI responses."""
    stripped = re.sub(r"^```(?:json)?\s*\n?", "", text.strip())
    stripped = re.sub(r"\n?```\s*$", "", stripped)
    return stripped.strip()


async def generate_json(
    client: anthropic.AsyncAnthropic,
    system_prompt: str,
    prompt: str,
    max_tokens: int = 2000,
    temperature: float = 0.5,
) -> str:
    """
    Ask Claude for a JSON object.

    The assistant turn is pre-filled with ``{`` so the reply continues a JSON
    object instead of opening with prose.

    Returns:
        The raw JSON text (not yet parsed)
    """
    start_time = time.time()
    logger.info(f"Starting AI JSON generation | model={settings.claude_model} | max_tokens={max_tokens}")
    logger.debug(f"Prompt length: {len(prompt)} chars")

    try:
        message = await client.messages.create(
            model=settings.claude_model,
            max_tokens=max_tokens,
            system=system_prompt,
            messages=[
                {"role": "user", "content": prompt},
                {"role": "assistant", "content": "{"},
            ],
            temperature=temperature,
        )
    except anthropic.APIError as e:
        duration_ms = (time.time() - start_time) * 1000
        logger.error(f"AI generation failed | duration={duration_ms:.2f}ms | error={str(e)}")
        raise ContentGenerationError(f"AI service request failed: {e}") from e

    duration_ms = (time.time() - start_time) * 1000
    logger.info(
        f"AI generation completed | duration={duration_ms:.2f}ms | "
        f"input_tokens={message.usage.input_tokens} | output_tokens={message.usage.output_tokens}"
    )

    content = "".join(block.text for block in message.content if block.type == "text").lstrip()
    if not content.startswith("{"):
        content = "{" + content
    return content


def parse_json_list(raw: str, key: str) -> list:
    """Return ``raw[key]`` as a list, or [] when the reply is not usable JSON."""
    try:
        data = json.loads(strip_json_fences(raw))
    except json.JSONDecodeError as e:
        logger.warning(f"AI response is not valid JSON (key={key}): {e}")
        return []
    items = data.get(key) if isinstance(data, dict) else None
    if not isinstance(items, list):
        logger.warning(f"AI response has no '{key}' list")
        return []
    return items


def parse_flashcards(raw: str) -> list[GeneratedFlashcard]:
    cards = []
    for item in parse_json_list(raw, "flashcards"):
        try:
            cards.append(GeneratedFlashcard.model_validate(item))
        except ValidationError as e:
            logger.debug(f"Dropping invalid flashcard {item!r}: {e.error_count()} errors")
    return cards


def parse_quiz_questions(raw: str) -> list[GeneratedQuizQuestion]:
    questions = []
    for item in parse_json_list(raw, "questions"):
        try:
            questions.append(GeneratedQuizQuestion.model_validate(item))
        except ValidationError as e:
            logger.debug(f"Dropping invalid quiz question {item!r}: {e.error_count()} errors")
    return questions


async def generate_flashcards(client: anthropic.AsyncAnthropic, text: str) -> list[GeneratedFlashcard]:
    raw = await generate_json(
        client,
        FLASHCARD_SYSTEM_PROMPT,
        f"Create flashcards from this text:\n\n{text}",
        max_tokens=1500,
    )
    return parse_flashcards(raw)


async def generate_quiz_questions(client: anthropic.AsyncAnthropic, text: str) -> list[GeneratedQuizQuestion]:
    raw = await generate_json(
        client,
        QUIZ_SYSTEM_PROMPT,
        f"Create quiz questions from this text:\n\n{text}",
        max_tokens=2000,
    )
    return parse_quiz_questions(raw)


async def gather_or_cancel(*coros):
    """Like ``asyncio.gather`` but cancels the remaining tasks once one fails."""
    tasks = [asyncio.ensure_future(coro) for coro in coros]
    try:
        return await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


async def generate_study_content(text: str) -> GeneratedContent:
    """
    Generate flashcards and quiz questions for a document.

    Both requests are dispatched together. Either one failing fails the whole
    operation and cancels the other; a malformed reply only empties its own half.

    Args:
        text: Sanitized document text (truncated to ``generation_max_chars``)

    Raises:
        ContentGenerationError: API failure, missing key, or timeout
    """
    excerpt = text[:settings.generation_max_chars]
    logger.info(f"Generating study content | chars={len(excerpt)} (of {len(text)})")

    async with get_anthropic_client() as client:
        try:
            flashcards, quiz_questions = await asyncio.wait_for(
                gather_or_cancel(
                    generate_flashcards(client, excerpt),
                    generate_quiz_questions(client, excerpt),
                ),
                timeout=settings.generation_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.error(f"AI generation timed out after {settings.generation_timeout_seconds}s")
            raise ContentGenerationError("AI service timed out")

    logger.info(f"Generated {len(flashcards)} flashcards and {len(quiz_questions)} quiz questions")
    return GeneratedContent(flashcards=flashcards, quiz_questions=quiz_questions)
