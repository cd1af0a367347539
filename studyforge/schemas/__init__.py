from studyforge.schemas.user import UserCreate, UserResponse, Token
from studyforge.schemas.uploaded_file import UploadedFileResponse, UploadedFileWithStudySet
from studyforge.schemas.study_set import StudySetCreate, StudySetResponse, StudySetDetailResponse

__all__ = [
    "UserCreate", "UserResponse", "Token",
    "UploadedFileResponse", "UploadedFileWithStudySet",
    "StudySetCreate", "StudySetResponse", "StudySetDetailResponse",
]
