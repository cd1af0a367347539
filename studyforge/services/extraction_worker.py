"""
Background text extraction for uploaded files.

Scheduled by the upload endpoint after the response is sent. Every run ends
with the file in a terminal state (``completed`` or ``error``) and the stored
upload removed from disk.
"""

import asyncio
import os

from studyforge.core.config import settings
from studyforge.core.logging_config import get_logger
from studyforge.models.uploaded_file import FileStatus, InvalidStatusTransition
from studyforge.services.file_processor import extract_text_from_file
from studyforge.services.storage import open_storage

logger = get_logger(__name__)


async def _extract_with_retries(file_path: str, mime_type: str) -> str:
    """
    Run the extractor off the event loop, retrying failures.

    A timed-out attempt is not retried: its worker thread cannot be stopped and
    keeps running, so a retry would read the same file alongside it.
    """
    attempts = 1 + max(settings.extraction_retries, 0)
    last_error: Exception | None = None
    for attempt in range(1, attempts + 1):
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(extract_text_from_file, file_path, mime_type),
                timeout=settings.extraction_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Extraction attempt {attempt}/{attempts} timed out | path={file_path} | not retrying")
            raise TimeoutError(
                f"Extraction timed out after {settings.extraction_timeout_seconds}s"
            )
        except Exception as e:
            last_error = e
        logger.warning(f"Extraction attempt {attempt}/{attempts} failed | path={file_path} | error={last_error}")
    raise last_error


def remove_stored_file(file_path: str) -> None:
    try:
        os.remove(file_path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Could not remove stored upload {file_path}: {e}")


async def run_extraction(file_id: int, file_path: str, mime_type: str) -> None:
    """Extract the text of one upload and record the outcome on its record."""
    logger.info(f"Extraction started | file_id={file_id} | type={mime_type}")
    try:
        try:
            text = await _extract_with_retries(file_path, mime_type)
        except Exception as e:
            logger.error(f"Extraction failed | file_id={file_id} | error={e}")
            outcome, text = FileStatus.ERROR, None
        else:
            outcome = FileStatus.COMPLETED

        with open_storage() as storage:
            try:
                updated = storage.set_file_status(file_id, outcome, text)
            except InvalidStatusTransition as e:
                # Already finalized by stale-upload recovery
                logger.warning(f"Extraction result discarded | file_id={file_id} | {e}")
                return
        if updated is None:
            logger.info(f"File {file_id} was deleted during extraction")
        else:
            logger.info(f"Extraction finished | file_id={file_id} | status={outcome.value}")
    finally:
        remove_stored_file(file_path)
