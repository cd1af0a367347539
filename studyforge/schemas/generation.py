from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from studyforge.schemas.study_set import (
    StudySetResponse,
    FlashcardResponse,
    QuizQuestionResponse,
)


class GeneratedFlashcard(BaseModel):
    """Flashcard as returned by the model, before it is stored."""
    question: str
    answer: str

    @field_validator("question", "answer")
    @classmethod
    def not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class GeneratedQuizQuestion(BaseModel):
    """Multiple-choice question as returned by the model (``correctAnswer`` on the wire)."""
    model_config = ConfigDict(populate_by_name=True)

    question: str
    options: list[str]
    correct_answer: int = Field(alias="correctAnswer", ge=0)

    @field_validator("question")
    @classmethod
    def question_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    @field_validator("options")
    @classmethod
    def enough_options(cls, v: list[str]) -> list[str]:
        v = [str(o).strip() for o in v]
        if len(v) < 2 or any(not o for o in v):
            raise ValueError("need at least 2 non-blank options")
        return v

    @model_validator(mode="after")
    def answer_in_range(self):
        if self.correct_answer >= len(self.options):
            raise ValueError("correctAnswer is out of range")
        return self


class GeneratedContent(BaseModel):
    flashcards: list[GeneratedFlashcard] = []
    quiz_questions: list[GeneratedQuizQuestion] = []


class GenerateResponse(BaseModel):
    """Result of generating study material from an uploaded file."""
    study_set: StudySetResponse
    flashcards: list[FlashcardResponse]
    quiz_questions: list[QuizQuestionResponse]
