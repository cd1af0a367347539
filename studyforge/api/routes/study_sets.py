from fastapi import APIRouter, Depends, HTTPException, status

from studyforge.api.deps import get_current_user, get_storage
from studyforge.core.logging_config import get_logger
from studyforge.models.study_set import StudySet
from studyforge.models.user import User
from studyforge.schemas.study_set import (
    FlashcardCreate,
    FlashcardResponse,
    FlashcardUpdate,
    QuizQuestionCreate,
    QuizQuestionResponse,
    QuizQuestionUpdate,
    StudySetCreate,
    StudySetDetailResponse,
    StudySetResponse,
    StudySetUpdate,
)
from studyforge.services.storage import Storage

logger = get_logger(__name__)

router = APIRouter(tags=["Study Sets"])


def build_study_set_detail(storage: Storage, study_set: StudySet) -> StudySetDetailResponse:
    """Study set with its items, read through storage so both backends answer the same."""
    return StudySetDetailResponse(
        **StudySetResponse.model_validate(study_set).model_dump(),
        flashcards=[FlashcardResponse.model_validate(c) for c in storage.list_flashcards(study_set.id)],
        quiz_questions=[QuizQuestionResponse.model_validate(q) for q in storage.list_quiz_questions(study_set.id)],
    )


def _get_owned_study_set(storage: Storage, study_set_id: int, user: User) -> StudySet:
    study_set = storage.get_study_set(study_set_id, user.id)
    if not study_set:
        raise HTTPException(status_code=404, detail="Study set not found")
    return study_set


# ── Study sets ───────────────────────────────────────────────


@router.get("/study-sets", response_model=list[StudySetResponse])
def list_study_sets(
    storage: Storage = Depends(get_storage),
    current_user: User = Depends(get_current_user),
):
    return storage.list_study_sets(current_user.id)


@router.post("/study-sets", response_model=StudySetResponse, status_code=status.HTTP_201_CREATED)
def create_study_set(
    data: StudySetCreate,
    storage: Storage = Depends(get_storage),
    current_user: User = Depends(get_current_user),
):
    study_set = storage.create_study_set(current_user.id, data.title, data.description)
    logger.info(f"Study set created | id={study_set.id} | user_id={current_user.id}")
    return study_set


@router.get("/study-sets/{study_set_id}", response_model=StudySetDetailResponse)
def get_study_set(
    study_set_id: int,
    storage: Storage = Depends(get_storage),
    current_user: User = Depends(get_current_user),
):
    study_set = _get_owned_study_set(storage, study_set_id, current_user)
    return build_study_set_detail(storage, study_set)


@router.patch("/study-sets/{study_set_id}", response_model=StudySetResponse)
def update_study_set(
    study_set_id: int,
    update: StudySetUpdate,
    storage: Storage = Depends(get_storage),
    current_user: User = Depends(get_current_user),
):
    study_set = storage.update_study_set(
        study_set_id, current_user.id, **update.model_dump(exclude_unset=True)
    )
    if not study_set:
        raise HTTPException(status_code=404, detail="Study set not found")
    return study_set


@router.delete("/study-sets/{study_set_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_study_set(
    study_set_id: int,
    storage: Storage = Depends(get_storage),
    current_user: User = Depends(get_current_user),
):
    """Delete a study set with its flashcards and quiz questions."""
    if not storage.delete_study_set(study_set_id, current_user.id):
        raise HTTPException(status_code=404, detail="Study set not found")
    logger.info(f"Study set deleted | id={study_set_id} | user_id={current_user.id}")
    return None


@router.get("/study-sets/{study_set_id}/flashcards", response_model=list[FlashcardResponse])
def list_flashcards(
    study_set_id: int,
    storage: Storage = Depends(get_storage),
    current_user: User = Depends(get_current_user),
):
    _get_owned_study_set(storage, study_set_id, current_user)
    return storage.list_flashcards(study_set_id)


@router.get("/study-sets/{study_set_id}/quiz-questions", response_model=list[QuizQuestionResponse])
def list_quiz_questions(
    study_set_id: int,
    storage: Storage = Depends(get_storage),
    current_user: User = Depends(get_current_user),
):
    _get_owned_study_set(storage, study_set_id, current_user)
    return storage.list_quiz_questions(study_set_id)


# ── Flashcards ───────────────────────────────────────────────


@router.post("/flashcards", response_model=FlashcardResponse, status_code=status.HTTP_201_CREATED)
def create_flashcard(
    data: FlashcardCreate,
    storage: Storage = Depends(get_storage),
    current_user: User = Depends(get_current_user),
):
    _get_owned_study_set(storage, data.study_set_id, current_user)
    return storage.create_flashcard(data.study_set_id, data.question, data.answer, data.order)


@router.put("/flashcards/{flashcard_id}", response_model=FlashcardResponse)
def update_flashcard(
    flashcard_id: int,
    update: FlashcardUpdate,
    storage: Storage = Depends(get_storage),
    current_user: User = Depends(get_current_user),
):
    card = storage.update_flashcard(
        flashcard_id, current_user.id, **update.model_dump(exclude_unset=True)
    )
    if not card:
        raise HTTPException(status_code=404, detail="Flashcard not found")
    return card


@router.delete("/flashcards/{flashcard_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_flashcard(
    flashcard_id: int,
    storage: Storage = Depends(get_storage),
    current_user: User = Depends(get_current_user),
):
    if not storage.delete_flashcard(flashcard_id, current_user.id):
        raise HTTPException(status_code=404, detail="Flashcard not found")
    return None


# ── Quiz questions ───────────────────────────────────────────


@router.post("/quiz-questions", response_model=QuizQuestionResponse, status_code=status.HTTP_201_CREATED)
def create_quiz_question(
    data: QuizQuestionCreate,
    storage: Storage = Depends(get_storage),
    current_user: User = Depends(get_current_user),
):
    _get_owned_study_set(storage, data.study_set_id, current_user)
    return storage.create_quiz_question(
        data.study_set_id, data.question, data.options, data.correct_answer, data.order
    )


@router.put("/quiz-questions/{question_id}", response_model=QuizQuestionResponse)
def update_quiz_question(
    question_id: int,
    update: QuizQuestionUpdate,
    storage: Storage = Depends(get_storage),
    current_user: User = Depends(get_current_user),
):
    existing = storage.get_quiz_question(question_id, current_user.id)
    if not existing:
        raise HTTPException(status_code=404, detail="Quiz question not found")

    fields = update.model_dump(exclude_unset=True)
    # correct_answer must still index into the options after the update
    options = fields.get("options") or existing.options
    correct_answer = fields.get("correct_answer")
    if correct_answer is None:
        correct_answer = existing.correct_answer
    if correct_answer >= len(options):
        raise HTTPException(
            status_code=400,
            detail="correct_answer must index into options",
        )

    return storage.update_quiz_question(question_id, current_user.id, **fields)


@router.delete("/quiz-questions/{question_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_quiz_question(
    question_id: int,
    storage: Storage = Depends(get_storage),
    current_user: User = Depends(get_current_user),
):
    if not storage.delete_quiz_question(question_id, current_user.id):
        raise HTTPException(status_code=404, detail="Quiz question not found")
    return None
