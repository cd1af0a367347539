import os
import uuid

from fastapi import APIRouter, BackgroundTasks, Depends, File, HTTPException, Request, UploadFile, status

from studyforge.api.deps import get_current_user, get_storage
from studyforge.api.routes.study_sets import build_study_set_detail
from studyforge.core.config import settings
from studyforge.core.logging_config import get_logger
from studyforge.core.rate_limit import limiter
from studyforge.models.uploaded_file import FileStatus, UploadedFile
from studyforge.models.user import User
from studyforge.schemas.generation import GenerateResponse
from studyforge.schemas.study_set import FlashcardResponse, QuizQuestionResponse, StudySetResponse
from studyforge.schemas.uploaded_file import (
    SupportedFormats,
    UploadedFileResponse,
    UploadedFileWithStudySet,
)
from studyforge.services.ai_service import ContentGenerationError, generate_study_content
from studyforge.services.extraction_worker import remove_stored_file, run_extraction
from studyforge.services.file_processor import (
    EXTENSIONS_BY_MIME,
    get_supported_formats,
    validate_file_type,
)
from studyforge.services.storage import Storage

logger = get_logger(__name__)

router = APIRouter(tags=["Files"])


def _study_set_title(original_name: str) -> str:
    base_name = original_name.rsplit(".", 1)[0] if "." in original_name else original_name
    return base_name.strip() or original_name


def _with_study_set(storage: Storage, uploaded: UploadedFile, user: User) -> UploadedFileWithStudySet:
    study_set = None
    if uploaded.study_set_id:
        linked = storage.get_study_set(uploaded.study_set_id, user.id)
        if linked:
            study_set = build_study_set_detail(storage, linked)
    return UploadedFileWithStudySet(
        **UploadedFileResponse.model_validate(uploaded).model_dump(),
        study_set=study_set,
    )


@router.get("/upload/formats", response_model=SupportedFormats)
def get_upload_formats():
    """Get information about supported file upload formats."""
    return get_supported_formats()


@router.post("/upload", response_model=UploadedFileResponse)
@limiter.limit("20/minute")
async def upload_file(
    request: Request,
    background_tasks: BackgroundTasks,
    file: UploadFile | None = File(None),
    storage: Storage = Depends(get_storage),
    current_user: User = Depends(get_current_user),
):
    """
    Accept a document and start extracting its text.

    The record is returned in ``processing`` straight away; extraction runs
    after the response is sent. Poll ``GET /api/files/{id}`` for the outcome.
    """
    if file is None:
        raise HTTPException(status_code=400, detail="No file uploaded")

    mime_type = file.content_type or ""
    if not validate_file_type(mime_type):
        logger.info(f"Rejected upload | user_id={current_user.id} | type={mime_type!r}")
        raise HTTPException(
            status_code=400,
            detail="Invalid file type. Only PDF, DOCX, and TXT files are allowed.",
        )

    try:
        file_content = await file.read()
    except Exception as e:
        raise HTTPException(status_code=400, detail=f"Failed to read file: {str(e)}")

    if len(file_content) > settings.max_upload_size:
        raise HTTPException(
            status_code=413,
            detail=f"File size exceeds maximum allowed size of {settings.max_upload_size_mb} MB",
        )

    os.makedirs(settings.upload_dir, exist_ok=True)
    stored_name = f"{uuid.uuid4().hex}{EXTENSIONS_BY_MIME[mime_type]}"
    file_path = os.path.join(settings.upload_dir, stored_name)
    with open(file_path, "wb") as f:
        f.write(file_content)

    try:
        uploaded = storage.create_uploaded_file(
            user_id=current_user.id,
            filename=stored_name,
            original_name=file.filename or stored_name,
            mime_type=mime_type,
        )
    except Exception:
        remove_stored_file(file_path)
        raise
    logger.info(
        f"File uploaded | file_id={uploaded.id} | user_id={current_user.id} | "
        f"type={mime_type} | size={len(file_content)}"
    )

    background_tasks.add_task(run_extraction, uploaded.id, file_path, mime_type)
    return uploaded


@router.get("/files", response_model=list[UploadedFileWithStudySet])
def list_files(
    storage: Storage = Depends(get_storage),
    current_user: User = Depends(get_current_user),
):
    """Upload history, newest first, with any generated study material."""
    return [
        _with_study_set(storage, uploaded, current_user)
        for uploaded in storage.list_uploaded_files(current_user.id)
    ]


@router.get("/files/{file_id}", response_model=UploadedFileResponse)
def get_file(
    file_id: int,
    storage: Storage = Depends(get_storage),
    current_user: User = Depends(get_current_user),
):
    uploaded = storage.get_uploaded_file(file_id, current_user.id)
    if not uploaded:
        raise HTTPException(status_code=404, detail="File not found")
    return uploaded


@router.post("/files/{file_id}/generate", response_model=GenerateResponse)
async def generate_from_file(
    file_id: int,
    storage: Storage = Depends(get_storage),
    current_user: User = Depends(get_current_user),
):
    """Generate flashcards and quiz questions from a processed file and store them as a study set."""
    uploaded = storage.get_uploaded_file(file_id, current_user.id)
    if not uploaded:
        raise HTTPException(status_code=404, detail="File not found")
    if uploaded.status != FileStatus.COMPLETED.value:
        raise HTTPException(
            status_code=400,
            detail=f"File is not ready for generation (status: {uploaded.status})",
        )
    if not uploaded.extracted_text:
        raise HTTPException(status_code=400, detail="No text could be extracted from the uploaded file")

    try:
        content = await generate_study_content(uploaded.extracted_text)
    except ContentGenerationError as e:
        logger.error(f"Generation failed | file_id={file_id} | error={e}")
        raise HTTPException(status_code=500, detail="Failed to generate content")

    study_set = storage.save_generated_content(
        file_id, current_user.id, _study_set_title(uploaded.original_name), content
    )
    logger.info(
        f"Study set generated | file_id={file_id} | study_set_id={study_set.id} | "
        f"flashcards={len(content.flashcards)} | quiz_questions={len(content.quiz_questions)}"
    )
    return GenerateResponse(
        study_set=StudySetResponse.model_validate(study_set),
        flashcards=[FlashcardResponse.model_validate(c) for c in storage.list_flashcards(study_set.id)],
        quiz_questions=[QuizQuestionResponse.model_validate(q) for q in storage.list_quiz_questions(study_set.id)],
    )


@router.delete("/files/{file_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_file(
    file_id: int,
    storage: Storage = Depends(get_storage),
    current_user: User = Depends(get_current_user),
):
    """Delete an uploaded file along with the study set generated from it."""
    if not storage.delete_uploaded_file(file_id, current_user.id):
        raise HTTPException(status_code=404, detail="File not found")
    logger.info(f"File deleted | file_id={file_id} | user_id={current_user.id}")
    return None
