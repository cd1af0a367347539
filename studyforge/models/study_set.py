from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Text, JSON, Index
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from studyforge.db.database import Base


class StudySet(Base):
    __tablename__ = "study_sets"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Display order is (order, id): explicit position first, insertion order on ties
    flashcards = relationship(
        "Flashcard",
        back_populates="study_set",
        cascade="all, delete-orphan",
        order_by=lambda: [Flashcard.order, Flashcard.id],
    )
    quiz_questions = relationship(
        "QuizQuestion",
        back_populates="study_set",
        cascade="all, delete-orphan",
        order_by=lambda: [QuizQuestion.order, QuizQuestion.id],
    )

    __table_args__ = (
        Index("ix_study_sets_user_created", "user_id", "created_at"),
    )


class Flashcard(Base):
    __tablename__ = "flashcards"

    id = Column(Integer, primary_key=True, index=True)
    study_set_id = Column(Integer, ForeignKey("study_sets.id", ondelete="CASCADE"), nullable=False)
    question = Column(Text, nullable=False)
    answer = Column(Text, nullable=False)
    order = Column(Integer, nullable=False, default=0)

    study_set = relationship("StudySet", back_populates="flashcards")

    __table_args__ = (
        Index("ix_flashcards_set_order", "study_set_id", "order"),
    )


class QuizQuestion(Base):
    __tablename__ = "quiz_questions"

    id = Column(Integer, primary_key=True, index=True)
    study_set_id = Column(Integer, ForeignKey("study_sets.id", ondelete="CASCADE"), nullable=False)
    question = Column(Text, nullable=False)
    options = Column(JSON, nullable=False)  # list[str]
    correct_answer = Column(Integer, nullable=False)  # zero-based index into options
    order = Column(Integer, nullable=False, default=0)

    study_set = relationship("StudySet", back_populates="quiz_questions")

    __table_args__ = (
        Index("ix_quiz_questions_set_order", "study_set_id", "order"),
    )
