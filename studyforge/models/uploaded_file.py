import enum

from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Text, Index
from sqlalchemy.sql import func

from studyforge.db.database import Base


class FileStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


TERMINAL_STATUSES = frozenset({FileStatus.COMPLETED, FileStatus.ERROR})

_ALLOWED_TRANSITIONS = {
    FileStatus.PENDING: {FileStatus.PROCESSING},
    FileStatus.PROCESSING: {FileStatus.COMPLETED, FileStatus.ERROR},
}


class InvalidStatusTransition(Exception):
    """Raised when a file status change is not part of the upload lifecycle."""

    def __init__(self, current: FileStatus, requested: FileStatus):
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot move file from '{current.value}' to '{requested.value}'")


class UploadedFile(Base):
    __tablename__ = "uploaded_files"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    filename = Column(String(255), nullable=False)  # stored name in the upload dir
    original_name = Column(String(255), nullable=False)
    mime_type = Column(String(255), nullable=False)

    # Store as string for cross-DB compatibility (SQLite/PostgreSQL)
    status = Column(String(20), nullable=False, default=FileStatus.PENDING.value)
    extracted_text = Column(Text, nullable=True)  # set iff status == completed

    study_set_id = Column(Integer, ForeignKey("study_sets.id", ondelete="SET NULL"), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("ix_uploaded_files_user_created", "user_id", "created_at"),
        Index("ix_uploaded_files_status", "status"),
    )

    @property
    def is_terminal(self) -> bool:
        return FileStatus(self.status) in TERMINAL_STATUSES

    def transition_to(self, new_status: FileStatus, extracted_text: str | None = None) -> None:
        """Move along the upload lifecycle.

        Only ``completed`` carries text; ``error`` always clears it so a failed
        extraction never leaves partial content behind.
        """
        current = FileStatus(self.status)
        if new_status not in _ALLOWED_TRANSITIONS.get(current, set()):
            raise InvalidStatusTransition(current, new_status)
        if new_status == FileStatus.COMPLETED and extracted_text is None:
            raise ValueError("A completed file must carry its extracted text")

        self.status = new_status.value
        self.extracted_text = extracted_text if new_status == FileStatus.COMPLETED else None
