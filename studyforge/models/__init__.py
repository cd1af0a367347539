from studyforge.models.user import User
from studyforge.models.study_set import StudySet, Flashcard, QuizQuestion
from studyforge.models.uploaded_file import (
    UploadedFile,
    FileStatus,
    InvalidStatusTransition,
    TERMINAL_STATUSES,
)

__all__ = [
    "User",
    "StudySet",
    "Flashcard",
    "QuizQuestion",
    "UploadedFile",
    "FileStatus",
    "InvalidStatusTransition",
    "TERMINAL_STATUSES",
]
