import logging
import os
from datetime import datetime, timedelta, timezone

from studyforge.core.config import settings
from studyforge.models.uploaded_file import FileStatus, InvalidStatusTransition
from studyforge.services.storage import open_storage

logger = logging.getLogger(__name__)


def _remove_orphaned_uploads(cutoff: datetime) -> int:
    if not os.path.isdir(settings.upload_dir):
        return 0
    cutoff_ts = cutoff.timestamp()
    removed = 0
    for entry in os.scandir(settings.upload_dir):
        if not entry.is_file():
            continue
        try:
            if entry.stat().st_mtime < cutoff_ts:
                os.remove(entry.path)
                removed += 1
        except OSError as e:
            logger.warning(f"Could not remove orphaned upload {entry.path}: {e}")
    return removed


async def recover_stale_uploads():
    """Fail uploads stuck in ``processing`` and clear leftover stored files.

    A file can stay in ``processing`` forever if the process died mid-extraction.
    Anything older than ``stale_processing_minutes`` is moved to ``error`` so the
    user can delete it and upload again. Stored uploads are normally removed by
    the extraction task; whatever is still in the upload dir after the same
    window has no task left to clean it up.
    """
    logger.info("Running stale upload recovery...")

    now = datetime.now(timezone.utc)
    cutoff = now - timedelta(minutes=settings.stale_processing_minutes)
    failed = 0
    with open_storage() as storage:
        for uploaded in storage.list_stale_files(cutoff):
            try:
                storage.set_file_status(uploaded.id, FileStatus.ERROR)
                failed += 1
            except InvalidStatusTransition:
                # Finished between the query and the update
                continue

    removed = _remove_orphaned_uploads(cutoff)
    logger.info(f"Stale upload recovery complete: {failed} files failed, {removed} orphaned uploads removed")
    return failed, removed
