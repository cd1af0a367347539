from pydantic import BaseModel, Field, field_validator, model_validator
from datetime import datetime


def _check_options(options: list[str]) -> list[str]:
    cleaned = [o.strip() for o in options]
    if len(cleaned) < 2:
        raise ValueError("A quiz question needs at least 2 options")
    if any(not o for o in cleaned):
        raise ValueError("Quiz options must not be blank")
    return cleaned


class StudySetCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: str | None = None


class StudySetUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None


class StudySetResponse(BaseModel):
    id: int
    user_id: int
    title: str
    description: str | None = None
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class FlashcardCreate(BaseModel):
    study_set_id: int
    question: str = Field(min_length=1)
    answer: str = Field(min_length=1)
    order: int = 0


class FlashcardUpdate(BaseModel):
    question: str | None = Field(default=None, min_length=1)
    answer: str | None = Field(default=None, min_length=1)
    order: int | None = None


class FlashcardResponse(BaseModel):
    id: int
    study_set_id: int
    question: str
    answer: str
    order: int

    class Config:
        from_attributes = True


class QuizQuestionCreate(BaseModel):
    study_set_id: int
    question: str = Field(min_length=1)
    options: list[str]
    correct_answer: int = Field(ge=0)
    order: int = 0

    @field_validator("options")
    @classmethod
    def validate_options(cls, v: list[str]) -> list[str]:
        return _check_options(v)

    @model_validator(mode="after")
    def validate_correct_answer(self):
        if self.correct_answer >= len(self.options):
            raise ValueError("correct_answer must index into options")
        return self


class QuizQuestionUpdate(BaseModel):
    """Partial update; cross-field checks against stored values happen in the route."""
    question: str | None = Field(default=None, min_length=1)
    options: list[str] | None = None
    correct_answer: int | None = Field(default=None, ge=0)
    order: int | None = None

    @field_validator("options")
    @classmethod
    def validate_options(cls, v: list[str] | None) -> list[str] | None:
        if v is None:
            return v
        return _check_options(v)


class QuizQuestionResponse(BaseModel):
    id: int
    study_set_id: int
    question: str
    options: list[str]
    correct_answer: int
    order: int

    class Config:
        from_attributes = True


class StudySetDetailResponse(StudySetResponse):
    """Study set with its cards and questions in display order."""
    flashcards: list[FlashcardResponse] = []
    quiz_questions: list[QuizQuestionResponse] = []
