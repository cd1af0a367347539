"""
Persistence layer for users, uploaded files, study sets, flashcards and quiz questions.

Two interchangeable backends implement ``Storage``:

- ``DatabaseStorage`` wraps a SQLAlchemy session (one per request or job).
- ``MemoryStorage`` keeps everything in process memory, keyed by integer ids
  from incrementing counters. All access goes through a single lock.

The backend is chosen once at startup from ``settings.storage_backend``.
Every lookup that takes a ``user_id`` is scoped to that owner and answers
``None``/``False`` for anyone else's data.
"""

import itertools
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator

from sqlalchemy.orm import Session

from studyforge.core.config import settings
from studyforge.core.logging_config import get_logger
from studyforge.db.database import session_scope
from studyforge.models.study_set import StudySet, Flashcard, QuizQuestion
from studyforge.models.uploaded_file import UploadedFile, FileStatus
from studyforge.models.user import User
from studyforge.schemas.generation import GeneratedContent

logger = get_logger(__name__)

_STUDY_SET_FIELDS = {"title", "description"}
_FLASHCARD_FIELDS = {"question", "answer", "order"}
_QUIZ_QUESTION_FIELDS = {"question", "options", "correct_answer", "order"}


def _pick(fields: dict, allowed: set[str]) -> dict:
    return {k: v for k, v in fields.items() if k in allowed and v is not None}


class Storage(ABC):
    """CRUD contract shared by both backends."""

    # ── Users ────────────────────────────────────────────────

    @abstractmethod
    def get_user(self, user_id: int) -> User | None: ...

    @abstractmethod
    def get_user_by_email(self, email: str) -> User | None: ...

    @abstractmethod
    def create_user(
        self, email: str, hashed_password: str,
        first_name: str | None = None, last_name: str | None = None,
    ) -> User: ...

    # ── Study sets ───────────────────────────────────────────

    @abstractmethod
    def list_study_sets(self, user_id: int) -> list[StudySet]:
        """Newest first."""

    @abstractmethod
    def get_study_set(self, study_set_id: int, user_id: int) -> StudySet | None: ...

    @abstractmethod
    def create_study_set(self, user_id: int, title: str, description: str | None = None) -> StudySet: ...

    @abstractmethod
    def update_study_set(self, study_set_id: int, user_id: int, **fields) -> StudySet | None: ...

    @abstractmethod
    def delete_study_set(self, study_set_id: int, user_id: int) -> bool:
        """Delete a set with its flashcards and quiz questions; files linked to it are unlinked."""

    # ── Flashcards ───────────────────────────────────────────

    @abstractmethod
    def list_flashcards(self, study_set_id: int) -> list[Flashcard]:
        """Ordered by ``(order, id)``."""

    @abstractmethod
    def get_flashcard(self, flashcard_id: int, user_id: int) -> Flashcard | None: ...

    @abstractmethod
    def create_flashcard(self, study_set_id: int, question: str, answer: str, order: int = 0) -> Flashcard: ...

    @abstractmethod
    def update_flashcard(self, flashcard_id: int, user_id: int, **fields) -> Flashcard | None: ...

    @abstractmethod
    def delete_flashcard(self, flashcard_id: int, user_id: int) -> bool: ...

    # ── Quiz questions ───────────────────────────────────────

    @abstractmethod
    def list_quiz_questions(self, study_set_id: int) -> list[QuizQuestion]:
        """Ordered by ``(order, id)``."""

    @abstractmethod
    def get_quiz_question(self, question_id: int, user_id: int) -> QuizQuestion | None: ...

    @abstractmethod
    def create_quiz_question(
        self, study_set_id: int, question: str, options: list[str],
        correct_answer: int, order: int = 0,
    ) -> QuizQuestion: ...

    @abstractmethod
    def update_quiz_question(self, question_id: int, user_id: int, **fields) -> QuizQuestion | None: ...

    @abstractmethod
    def delete_quiz_question(self, question_id: int, user_id: int) -> bool: ...

    # ── Uploaded files ───────────────────────────────────────

    @abstractmethod
    def list_uploaded_files(self, user_id: int) -> list[UploadedFile]:
        """Newest first."""

    @abstractmethod
    def get_uploaded_file(self, file_id: int, user_id: int) -> UploadedFile | None: ...

    @abstractmethod
    def create_uploaded_file(
        self, user_id: int, filename: str, original_name: str, mime_type: str,
    ) -> UploadedFile:
        """Create the record directly in ``processing``."""

    @abstractmethod
    def set_file_status(
        self, file_id: int, status: FileStatus, extracted_text: str | None = None,
    ) -> UploadedFile | None:
        """Apply a lifecycle transition. Raises ``InvalidStatusTransition``."""

    @abstractmethod
    def list_stale_files(self, created_before: datetime) -> list[UploadedFile]:
        """Files of any owner still ``processing`` that were created before the cutoff."""

    @abstractmethod
    def delete_uploaded_file(self, file_id: int, user_id: int) -> bool:
        """Delete a file record and the study set generated from it."""

    @abstractmethod
    def save_generated_content(
        self, file_id: int, user_id: int, title: str, content: GeneratedContent,
    ) -> StudySet:
        """Store generated material as a new study set linked to the file.

        All rows are written together. A study set previously generated from
        the same file is replaced.
        """


# ============================================
# SQLAlchemy backend
# ============================================


class DatabaseStorage(Storage):
    def __init__(self, db: Session):
        self.db = db

    # Users

    def get_user(self, user_id):
        return self.db.query(User).filter(User.id == user_id).first()

    def get_user_by_email(self, email):
        return self.db.query(User).filter(User.email == email).first()

    def create_user(self, email, hashed_password, first_name=None, last_name=None):
        user = User(
            email=email, hashed_password=hashed_password,
            first_name=first_name, last_name=last_name,
        )
        self.db.add(user)
        self.db.commit()
        self.db.refresh(user)
        return user

    # Study sets

    def list_study_sets(self, user_id):
        return (
            self.db.query(StudySet)
            .filter(StudySet.user_id == user_id)
            .order_by(StudySet.created_at.desc(), StudySet.id.desc())
            .all()
        )

    def get_study_set(self, study_set_id, user_id):
        return self.db.query(StudySet).filter(
            StudySet.id == study_set_id,
            StudySet.user_id == user_id,
        ).first()

    def create_study_set(self, user_id, title, description=None):
        study_set = StudySet(user_id=user_id, title=title, description=description)
        self.db.add(study_set)
        self.db.commit()
        self.db.refresh(study_set)
        return study_set

    def update_study_set(self, study_set_id, user_id, **fields):
        study_set = self.get_study_set(study_set_id, user_id)
        if not study_set:
            return None
        for key, value in _pick(fields, _STUDY_SET_FIELDS).items():
            setattr(study_set, key, value)
        self.db.commit()
        self.db.refresh(study_set)
        return study_set

    def _delete_study_set(self, study_set: StudySet) -> None:
        self.db.query(UploadedFile).filter(
            UploadedFile.study_set_id == study_set.id
        ).update({UploadedFile.study_set_id: None}, synchronize_session="fetch")
        self.db.delete(study_set)  # flashcards/quiz questions via delete-orphan cascade

    def delete_study_set(self, study_set_id, user_id):
        study_set = self.get_study_set(study_set_id, user_id)
        if not study_set:
            return False
        self._delete_study_set(study_set)
        self.db.commit()
        return True

    # Flashcards

    def list_flashcards(self, study_set_id):
        return (
            self.db.query(Flashcard)
            .filter(Flashcard.study_set_id == study_set_id)
            .order_by(Flashcard.order, Flashcard.id)
            .all()
        )

    def get_flashcard(self, flashcard_id, user_id):
        return (
            self.db.query(Flashcard)
            .join(StudySet, Flashcard.study_set_id == StudySet.id)
            .filter(Flashcard.id == flashcard_id, StudySet.user_id == user_id)
            .first()
        )

    def create_flashcard(self, study_set_id, question, answer, order=0):
        card = Flashcard(study_set_id=study_set_id, question=question, answer=answer, order=order)
        self.db.add(card)
        self.db.commit()
        self.db.refresh(card)
        return card

    def update_flashcard(self, flashcard_id, user_id, **fields):
        card = self.get_flashcard(flashcard_id, user_id)
        if not card:
            return None
        for key, value in _pick(fields, _FLASHCARD_FIELDS).items():
            setattr(card, key, value)
        self.db.commit()
        self.db.refresh(card)
        return card

    def delete_flashcard(self, flashcard_id, user_id):
        card = self.get_flashcard(flashcard_id, user_id)
        if not card:
            return False
        self.db.delete(card)
        self.db.commit()
        return True

    # Quiz questions

    def list_quiz_questions(self, study_set_id):
        return (
            self.db.query(QuizQuestion)
            .filter(QuizQuestion.study_set_id == study_set_id)
            .order_by(QuizQuestion.order, QuizQuestion.id)
            .all()
        )

    def get_quiz_question(self, question_id, user_id):
        return (
            self.db.query(QuizQuestion)
            .join(StudySet, QuizQuestion.study_set_id == StudySet.id)
            .filter(QuizQuestion.id == question_id, StudySet.user_id == user_id)
            .first()
        )

    def create_quiz_question(self, study_set_id, question, options, correct_answer, order=0):
        quiz_question = QuizQuestion(
            study_set_id=study_set_id, question=question, options=list(options),
            correct_answer=correct_answer, order=order,
        )
        self.db.add(quiz_question)
        self.db.commit()
        self.db.refresh(quiz_question)
        return quiz_question

    def update_quiz_question(self, question_id, user_id, **fields):
        quiz_question = self.get_quiz_question(question_id, user_id)
        if not quiz_question:
            return None
        for key, value in _pick(fields, _QUIZ_QUESTION_FIELDS).items():
            setattr(quiz_question, key, list(value) if key == "options" else value)
        self.db.commit()
        self.db.refresh(quiz_question)
        return quiz_question

    def delete_quiz_question(self, question_id, user_id):
        quiz_question = self.get_quiz_question(question_id, user_id)
        if not quiz_question:
            return False
        self.db.delete(quiz_question)
        self.db.commit()
        return True

    # Uploaded files

    def list_uploaded_files(self, user_id):
        return (
            self.db.query(UploadedFile)
            .filter(UploadedFile.user_id == user_id)
            .order_by(UploadedFile.created_at.desc(), UploadedFile.id.desc())
            .all()
        )

    def get_uploaded_file(self, file_id, user_id):
        return self.db.query(UploadedFile).filter(
            UploadedFile.id == file_id,
            UploadedFile.user_id == user_id,
        ).first()

    def create_uploaded_file(self, user_id, filename, original_name, mime_type):
        uploaded = UploadedFile(
            user_id=user_id,
            filename=filename,
            original_name=original_name,
            mime_type=mime_type,
            status=FileStatus.PENDING.value,
        )
        uploaded.transition_to(FileStatus.PROCESSING)
        self.db.add(uploaded)
        self.db.commit()
        self.db.refresh(uploaded)
        return uploaded

    def set_file_status(self, file_id, status, extracted_text=None):
        uploaded = self.db.query(UploadedFile).filter(UploadedFile.id == file_id).first()
        if not uploaded:
            return None
        try:
            uploaded.transition_to(status, extracted_text)
        except Exception:
            self.db.rollback()
            raise
        self.db.commit()
        self.db.refresh(uploaded)
        return uploaded

    def list_stale_files(self, created_before):
        return self.db.query(UploadedFile).filter(
            UploadedFile.status == FileStatus.PROCESSING.value,
            UploadedFile.created_at < created_before,
        ).all()

    def delete_uploaded_file(self, file_id, user_id):
        uploaded = self.get_uploaded_file(file_id, user_id)
        if not uploaded:
            return False
        if uploaded.study_set_id:
            study_set = self.get_study_set(uploaded.study_set_id, user_id)
            if study_set:
                self._delete_study_set(study_set)
        self.db.delete(uploaded)
        self.db.commit()
        return True

    def save_generated_content(self, file_id, user_id, title, content):
        uploaded = self.get_uploaded_file(file_id, user_id)
        if not uploaded:
            raise LookupError(f"Uploaded file {file_id} not found")
        try:
            if uploaded.study_set_id:
                previous = self.get_study_set(uploaded.study_set_id, user_id)
                if previous:
                    self._delete_study_set(previous)

            study_set = StudySet(user_id=user_id, title=title)
            study_set.flashcards = [
                Flashcard(question=card.question, answer=card.answer, order=index)
                for index, card in enumerate(content.flashcards)
            ]
            study_set.quiz_questions = [
                QuizQuestion(
                    question=q.question, options=list(q.options),
                    correct_answer=q.correct_answer, order=index,
                )
                for index, q in enumerate(content.quiz_questions)
            ]
            self.db.add(study_set)
            self.db.flush()
            uploaded.study_set_id = study_set.id
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(study_set)
        return study_set


# ============================================
# In-memory backend
# ============================================


class MemoryStorage(Storage):
    """Process-local storage. Rows are plain (never session-bound) model instances."""

    def __init__(self):
        self._lock = threading.RLock()
        self._users: dict[int, User] = {}
        self._study_sets: dict[int, StudySet] = {}
        self._flashcards: dict[int, Flashcard] = {}
        self._quiz_questions: dict[int, QuizQuestion] = {}
        self._files: dict[int, UploadedFile] = {}
        self._user_ids = itertools.count(1)
        self._study_set_ids = itertools.count(1)
        self._flashcard_ids = itertools.count(1)
        self._quiz_question_ids = itertools.count(1)
        self._file_ids = itertools.count(1)

    @staticmethod
    def _now() -> datetime:
        return datetime.now(timezone.utc)

    # Users

    def get_user(self, user_id):
        with self._lock:
            return self._users.get(user_id)

    def get_user_by_email(self, email):
        with self._lock:
            return next((u for u in self._users.values() if u.email == email), None)

    def create_user(self, email, hashed_password, first_name=None, last_name=None):
        with self._lock:
            if self.get_user_by_email(email):
                raise ValueError(f"User {email} already exists")
            user = User(
                id=next(self._user_ids), email=email, hashed_password=hashed_password,
                first_name=first_name, last_name=last_name, created_at=self._now(),
            )
            self._users[user.id] = user
            return user

    # Study sets

    def list_study_sets(self, user_id):
        with self._lock:
            sets = [s for s in self._study_sets.values() if s.user_id == user_id]
        return sorted(sets, key=lambda s: (s.created_at, s.id), reverse=True)

    def get_study_set(self, study_set_id, user_id):
        with self._lock:
            study_set = self._study_sets.get(study_set_id)
        if study_set is None or study_set.user_id != user_id:
            return None
        return study_set

    def create_study_set(self, user_id, title, description=None):
        with self._lock:
            study_set = StudySet(
                id=next(self._study_set_ids), user_id=user_id,
                title=title, description=description, created_at=self._now(),
            )
            self._study_sets[study_set.id] = study_set
            return study_set

    def update_study_set(self, study_set_id, user_id, **fields):
        with self._lock:
            study_set = self.get_study_set(study_set_id, user_id)
            if not study_set:
                return None
            for key, value in _pick(fields, _STUDY_SET_FIELDS).items():
                setattr(study_set, key, value)
            return study_set

    def _delete_study_set(self, study_set_id: int) -> None:
        self._study_sets.pop(study_set_id, None)
        for card_id in [c.id for c in self._flashcards.values() if c.study_set_id == study_set_id]:
            del self._flashcards[card_id]
        for q_id in [q.id for q in self._quiz_questions.values() if q.study_set_id == study_set_id]:
            del self._quiz_questions[q_id]
        for uploaded in self._files.values():
            if uploaded.study_set_id == study_set_id:
                uploaded.study_set_id = None

    def delete_study_set(self, study_set_id, user_id):
        with self._lock:
            if not self.get_study_set(study_set_id, user_id):
                return False
            self._delete_study_set(study_set_id)
            return True

    # Flashcards

    def list_flashcards(self, study_set_id):
        with self._lock:
            cards = [c for c in self._flashcards.values() if c.study_set_id == study_set_id]
        return sorted(cards, key=lambda c: (c.order, c.id))

    def get_flashcard(self, flashcard_id, user_id):
        with self._lock:
            card = self._flashcards.get(flashcard_id)
            if card is None or not self.get_study_set(card.study_set_id, user_id):
                return None
            return card

    def create_flashcard(self, study_set_id, question, answer, order=0):
        with self._lock:
            card = Flashcard(
                id=next(self._flashcard_ids), study_set_id=study_set_id,
                question=question, answer=answer, order=order,
            )
            self._flashcards[card.id] = card
            return card

    def update_flashcard(self, flashcard_id, user_id, **fields):
        with self._lock:
            card = self.get_flashcard(flashcard_id, user_id)
            if not card:
                return None
            for key, value in _pick(fields, _FLASHCARD_FIELDS).items():
                setattr(card, key, value)
            return card

    def delete_flashcard(self, flashcard_id, user_id):
        with self._lock:
            if not self.get_flashcard(flashcard_id, user_id):
                return False
            del self._flashcards[flashcard_id]
            return True

    # Quiz questions

    def list_quiz_questions(self, study_set_id):
        with self._lock:
            questions = [q for q in self._quiz_questions.values() if q.study_set_id == study_set_id]
        return sorted(questions, key=lambda q: (q.order, q.id))

    def get_quiz_question(self, question_id, user_id):
        with self._lock:
            quiz_question = self._quiz_questions.get(question_id)
            if quiz_question is None or not self.get_study_set(quiz_question.study_set_id, user_id):
                return None
            return quiz_question

    def create_quiz_question(self, study_set_id, question, options, correct_answer, order=0):
        with self._lock:
            quiz_question = QuizQuestion(
                id=next(self._quiz_question_ids), study_set_id=study_set_id,
                question=question, options=list(options),
                correct_answer=correct_answer, order=order,
            )
            self._quiz_questions[quiz_question.id] = quiz_question
            return quiz_question

    def update_quiz_question(self, question_id, user_id, **fields):
        with self._lock:
            quiz_question = self.get_quiz_question(question_id, user_id)
            if not quiz_question:
                return None
            for key, value in _pick(fields, _QUIZ_QUESTION_FIELDS).items():
                setattr(quiz_question, key, list(value) if key == "options" else value)
            return quiz_question

    def delete_quiz_question(self, question_id, user_id):
        with self._lock:
            if not self.get_quiz_question(question_id, user_id):
                return False
            del self._quiz_questions[question_id]
            return True

    # Uploaded files

    def list_uploaded_files(self, user_id):
        with self._lock:
            files = [f for f in self._files.values() if f.user_id == user_id]
        return sorted(files, key=lambda f: (f.created_at, f.id), reverse=True)

    def get_uploaded_file(self, file_id, user_id):
        with self._lock:
            uploaded = self._files.get(file_id)
        if uploaded is None or uploaded.user_id != user_id:
            return None
        return uploaded

    def create_uploaded_file(self, user_id, filename, original_name, mime_type):
        with self._lock:
            uploaded = UploadedFile(
                id=next(self._file_ids), user_id=user_id, filename=filename,
                original_name=original_name, mime_type=mime_type,
                status=FileStatus.PENDING.value, extracted_text=None,
                study_set_id=None, created_at=self._now(),
            )
            uploaded.transition_to(FileStatus.PROCESSING)
            self._files[uploaded.id] = uploaded
            return uploaded

    def set_file_status(self, file_id, status, extracted_text=None):
        with self._lock:
            uploaded = self._files.get(file_id)
            if uploaded is None:
                return None
            uploaded.transition_to(status, extracted_text)
            return uploaded

    def list_stale_files(self, created_before):
        with self._lock:
            return [
                f for f in self._files.values()
                if f.status == FileStatus.PROCESSING.value and f.created_at < created_before
            ]

    def delete_uploaded_file(self, file_id, user_id):
        with self._lock:
            uploaded = self.get_uploaded_file(file_id, user_id)
            if not uploaded:
                return False
            if uploaded.study_set_id:
                self._delete_study_set(uploaded.study_set_id)
            del self._files[file_id]
            return True

    def save_generated_content(self, file_id, user_id, title, content):
        with self._lock:
            uploaded = self.get_uploaded_file(file_id, user_id)
            if not uploaded:
                raise LookupError(f"Uploaded file {file_id} not found")
            if uploaded.study_set_id:
                self._delete_study_set(uploaded.study_set_id)

            study_set = self.create_study_set(user_id, title)
            for index, card in enumerate(content.flashcards):
                self.create_flashcard(study_set.id, card.question, card.answer, order=index)
            for index, q in enumerate(content.quiz_questions):
                self.create_quiz_question(
                    study_set.id, q.question, q.options, q.correct_answer, order=index,
                )
            uploaded.study_set_id = study_set.id
            return study_set


# ============================================
# Backend selection
# ============================================

_memory_storage: MemoryStorage | None = None
_memory_storage_lock = threading.Lock()


def get_memory_storage() -> MemoryStorage:
    global _memory_storage
    with _memory_storage_lock:
        if _memory_storage is None:
            logger.info("Using in-memory storage backend")
            _memory_storage = MemoryStorage()
        return _memory_storage


@contextmanager
def open_storage() -> Iterator[Storage]:
    """Storage handle for one unit of work (a request, a background task, a job)."""
    if settings.storage_backend == "memory":
        yield get_memory_storage()
        return
    with session_scope() as db:
        yield DatabaseStorage(db)
