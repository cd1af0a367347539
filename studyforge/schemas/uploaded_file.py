from pydantic import BaseModel
from datetime import datetime

from studyforge.schemas.study_set import StudySetDetailResponse


class UploadedFileResponse(BaseModel):
    id: int
    user_id: int
    filename: str
    original_name: str
    mime_type: str
    status: str  # pending, processing, completed, error
    extracted_text: str | None = None
    study_set_id: int | None = None
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class UploadedFileWithStudySet(UploadedFileResponse):
    """File history entry, with the generated study material when one is linked."""
    study_set: StudySetDetailResponse | None = None


class SupportedFormats(BaseModel):
    mime_types: list[str]
    extensions: list[str]
    max_file_size_mb: int
