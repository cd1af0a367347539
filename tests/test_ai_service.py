"""Tests for flashcard/quiz generation against a fake Anthropic client."""
import asyncio

import anthropic
import httpx
import pytest

from studyforge.services import ai_service
from studyforge.services.ai_service import (
    ContentGenerationError,
    generate_study_content,
    parse_flashcards,
    parse_quiz_questions,
    strip_json_fences,
)

QUIZ_REPLY = (
    '{"questions": [{"question": "What is 2+2?", "options": ["3", "4", "5", "6"], "correctAnswer": 1}]}'
)


def _run(coro):
    return asyncio.run(coro)


class TestParsing:
    def test_strip_json_fences(self):
        assert strip_json_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
        assert strip_json_fences('{"a": 1}') == '{"a": 1}'

    def test_malformed_json_gives_empty_list(self):
        assert parse_flashcards("{not json at all") == []
        assert parse_quiz_questions("") == []

    def test_missing_key_gives_empty_list(self):
        assert parse_flashcards('{"cards": [{"question": "Q", "answer": "A"}]}') == []
        assert parse_quiz_questions('{"questions": "not a list"}') == []

    def test_invalid_items_are_dropped(self):
        raw = (
            '{"flashcards": ['
            '{"question": "Q1", "answer": "A1"},'
            '{"question": "   ", "answer": "A2"},'
            '{"question": "Q3"},'
            '"just a string"'
            ']}'
        )
        cards = parse_flashcards(raw)
        assert [(c.question, c.answer) for c in cards] == [("Q1", "A1")]

    def test_quiz_question_validation(self):
        raw = (
            '{"questions": ['
            '{"question": "ok", "options": ["a", "b", "c", "d"], "correctAnswer": 3},'
            '{"question": "one option", "options": ["a"], "correctAnswer": 0},'
            '{"question": "out of range", "options": ["a", "b"], "correctAnswer": 2},'
            '{"question": "negative", "options": ["a", "b"], "correctAnswer": -1}'
            ']}'
        )
        questions = parse_quiz_questions(raw)
        assert len(questions) == 1
        assert questions[0].question == "ok"
        assert questions[0].correct_answer == 3


class TestGenerateStudyContent:
    def test_generates_both_halves(self, fake_ai):
        client = fake_ai(
            flashcards_reply='{"flashcards": [{"question": "Q1", "answer": "A1"}]}',
            quiz_reply=QUIZ_REPLY,
        )
        content = _run(generate_study_content("Some study text about arithmetic."))

        assert [(c.question, c.answer) for c in content.flashcards] == [("Q1", "A1")]
        assert len(content.quiz_questions) == 1
        assert content.quiz_questions[0].options == ["3", "4", "5", "6"]
        assert content.quiz_questions[0].correct_answer == 1
        assert len(client.messages.calls) == 2

    def test_requests_json_with_prefilled_assistant_turn(self, fake_ai):
        client = fake_ai()
        _run(generate_study_content("text"))
        for call in client.messages.calls:
            assert call["messages"][-1] == {"role": "assistant", "content": "{"}
            assert "JSON" in call["system"]

    def test_input_is_truncated(self, fake_ai, monkeypatch):
        monkeypatch.setattr(ai_service.settings, "generation_max_chars", 10)
        client = fake_ai()
        _run(generate_study_content("abcdefghijKLMNOPQRST"))
        for call in client.messages.calls:
            prompt = call["messages"][0]["content"]
            assert prompt.endswith("abcdefghij")
            assert "KLMNOP" not in prompt

    def test_malformed_reply_only_empties_its_half(self, fake_ai):
        fake_ai(flashcards_reply="{this is not json", quiz_reply=QUIZ_REPLY)
        content = _run(generate_study_content("text"))
        assert content.flashcards == []
        assert len(content.quiz_questions) == 1

    def test_api_error_fails_whole_operation(self, fake_ai):
        request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
        fake_ai(error=anthropic.APIConnectionError(request=request))
        with pytest.raises(ContentGenerationError):
            _run(generate_study_content("text"))

    def test_timeout(self, fake_ai, monkeypatch):
        client = fake_ai()

        async def slow_create(**kwargs):
            await asyncio.sleep(1)

        monkeypatch.setattr(client.messages, "create", slow_create)
        monkeypatch.setattr(ai_service.settings, "generation_timeout_seconds", 0.01)
        with pytest.raises(ContentGenerationError, match="timed out"):
            _run(generate_study_content("text"))

    def test_both_requests_in_flight_together(self, fake_ai, monkeypatch):
        client = fake_ai()
        original_create = client.messages.create
        in_flight = {"now": 0, "max": 0}

        async def tracked_create(**kwargs):
            in_flight["now"] += 1
            in_flight["max"] = max(in_flight["max"], in_flight["now"])
            await asyncio.sleep(0.05)
            in_flight["now"] -= 1
            return await original_create(**kwargs)

        monkeypatch.setattr(client.messages, "create", tracked_create)
        _run(generate_study_content("text"))
        assert in_flight["max"] == 2

    def test_failure_cancels_the_other_request(self, fake_ai, monkeypatch):
        client = fake_ai()
        cancelled = []
        request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")

        async def create(**kwargs):
            if '"flashcards"' in kwargs["system"]:
                await asyncio.sleep(0.01)
                raise anthropic.APIConnectionError(request=request)
            try:
                await asyncio.sleep(5)
            except asyncio.CancelledError:
                cancelled.append("quiz")
                raise

        async def generate_then_inspect():
            with pytest.raises(ContentGenerationError):
                await generate_study_content("text")
            # Checked before the event loop shuts down and cancels leftovers itself
            return list(cancelled)

        monkeypatch.setattr(client.messages, "create", create)
        assert _run(generate_then_inspect()) == ["quiz"]

    def test_client_is_closed(self, fake_ai):
        client = fake_ai()
        _run(generate_study_content("text"))
        assert client.closed is True

    def test_client_is_closed_after_failure(self, fake_ai):
        request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
        client = fake_ai(error=anthropic.APIConnectionError(request=request))
        with pytest.raises(ContentGenerationError):
            _run(generate_study_content("text"))
        assert client.closed is True

    def test_missing_api_key(self, monkeypatch):
        monkeypatch.setattr(ai_service.settings, "anthropic_api_key", "")
        with pytest.raises(ContentGenerationError, match="ANTHROPIC_API_KEY"):
            ai_service.get_anthropic_client()
