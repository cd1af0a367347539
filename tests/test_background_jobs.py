"""Background extraction task and stale upload recovery."""
import asyncio
import os
import time
from datetime import datetime, timedelta, timezone

import pytest

from studyforge.models.uploaded_file import FileStatus
from studyforge.services import extraction_worker, storage as storage_module
from studyforge.services.storage import MemoryStorage


@pytest.fixture()
def memory_storage(monkeypatch):
    """Route background work to a fresh in-memory backend."""
    from studyforge.core.config import settings

    store = MemoryStorage()
    monkeypatch.setattr(settings, "storage_backend", "memory")
    monkeypatch.setattr(storage_module, "_memory_storage", store)
    return store


@pytest.fixture()
def user(memory_storage):
    return memory_storage.create_user(email="jobs@test.com", hashed_password="x")


def _stored_upload(upload_dir, name, content):
    path = os.path.join(upload_dir, name)
    with open(path, "wb") as f:
        f.write(content)
    return path


# ── Extraction task ──────────────────────────────────────────


class TestRunExtraction:
    def test_success_completes_and_removes_upload(self, memory_storage, user, upload_dir):
        path = _stored_upload(upload_dir, "ok.txt", b"  Cells\tdivide \n by mitosis ")
        uploaded = memory_storage.create_uploaded_file(user.id, "ok.txt", "bio.txt", "text/plain")

        asyncio.run(extraction_worker.run_extraction(uploaded.id, path, "text/plain"))

        assert uploaded.status == "completed"
        assert uploaded.extracted_text == "Cells divide by mitosis"
        assert not os.path.exists(path)

    def test_failure_sets_error_and_still_removes_upload(self, memory_storage, user, upload_dir):
        path = _stored_upload(upload_dir, "bad.pdf", b"garbage")
        uploaded = memory_storage.create_uploaded_file(user.id, "bad.pdf", "scan.pdf", "application/pdf")

        asyncio.run(extraction_worker.run_extraction(uploaded.id, path, "application/pdf"))

        assert uploaded.status == "error"
        assert uploaded.extracted_text is None
        assert not os.path.exists(path)

    def test_retries_are_explicit(self, memory_storage, user, upload_dir, monkeypatch):
        from studyforge.core.config import settings
        from studyforge.services.file_processor import FileProcessingError

        attempts = []

        def flaky(file_path, mime_type):
            attempts.append(file_path)
            if len(attempts) < 2:
                raise FileProcessingError("transient")
            return "recovered text"

        monkeypatch.setattr(settings, "extraction_retries", 1)
        monkeypatch.setattr(extraction_worker, "extract_text_from_file", flaky)
        path = _stored_upload(upload_dir, "flaky.txt", b"ignored")
        uploaded = memory_storage.create_uploaded_file(user.id, "flaky.txt", "flaky.txt", "text/plain")

        asyncio.run(extraction_worker.run_extraction(uploaded.id, path, "text/plain"))

        assert len(attempts) == 2
        assert uploaded.status == "completed"
        assert uploaded.extracted_text == "recovered text"

    def test_no_retry_by_default(self, memory_storage, user, upload_dir, monkeypatch):
        attempts = []

        def broken(file_path, mime_type):
            attempts.append(file_path)
            raise RuntimeError("library crashed")

        monkeypatch.setattr(extraction_worker, "extract_text_from_file", broken)
        path = _stored_upload(upload_dir, "broken.txt", b"ignored")
        uploaded = memory_storage.create_uploaded_file(user.id, "broken.txt", "broken.txt", "text/plain")

        asyncio.run(extraction_worker.run_extraction(uploaded.id, path, "text/plain"))

        assert len(attempts) == 1
        assert uploaded.status == "error"

    def test_timeout_sets_error(self, memory_storage, user, upload_dir, monkeypatch):
        from studyforge.core.config import settings

        monkeypatch.setattr(settings, "extraction_timeout_seconds", 0.05)
        monkeypatch.setattr(extraction_worker, "extract_text_from_file",
                            lambda file_path, mime_type: time.sleep(0.5) or "too late")
        path = _stored_upload(upload_dir, "slow.txt", b"ignored")
        uploaded = memory_storage.create_uploaded_file(user.id, "slow.txt", "slow.txt", "text/plain")

        asyncio.run(extraction_worker.run_extraction(uploaded.id, path, "text/plain"))

        assert uploaded.status == "error"
        assert not os.path.exists(path)

    def test_timeout_is_not_retried(self, memory_storage, user, upload_dir, monkeypatch):
        from studyforge.core.config import settings

        attempts = []

        def slow(file_path, mime_type):
            attempts.append(file_path)
            time.sleep(0.3)
            return "too late"

        monkeypatch.setattr(settings, "extraction_timeout_seconds", 0.05)
        monkeypatch.setattr(settings, "extraction_retries", 2)
        monkeypatch.setattr(extraction_worker, "extract_text_from_file", slow)
        path = _stored_upload(upload_dir, "slow-retry.txt", b"ignored")
        uploaded = memory_storage.create_uploaded_file(user.id, "slow-retry.txt", "slow.txt", "text/plain")

        asyncio.run(extraction_worker.run_extraction(uploaded.id, path, "text/plain"))

        assert len(attempts) == 1
        assert uploaded.status == "error"
        assert not os.path.exists(path)

    def test_file_deleted_during_extraction(self, memory_storage, user, upload_dir):
        path = _stored_upload(upload_dir, "gone.txt", b"text")
        uploaded = memory_storage.create_uploaded_file(user.id, "gone.txt", "gone.txt", "text/plain")
        memory_storage.delete_uploaded_file(uploaded.id, user.id)

        asyncio.run(extraction_worker.run_extraction(uploaded.id, path, "text/plain"))

        assert not os.path.exists(path)


# ── Stale upload recovery ────────────────────────────────────


class TestRecoverStaleUploads:
    def test_old_processing_files_move_to_error(self, memory_storage, user):
        from studyforge.jobs.stale_uploads import recover_stale_uploads

        stuck = memory_storage.create_uploaded_file(user.id, "stuck.txt", "stuck.txt", "text/plain")
        stuck.created_at = datetime.now(timezone.utc) - timedelta(hours=2)
        fresh = memory_storage.create_uploaded_file(user.id, "fresh.txt", "fresh.txt", "text/plain")

        failed, _ = asyncio.run(recover_stale_uploads())

        assert failed == 1
        assert stuck.status == "error"
        assert stuck.extracted_text is None
        assert fresh.status == "processing"

    def test_finished_files_are_left_alone(self, memory_storage, user):
        from studyforge.jobs.stale_uploads import recover_stale_uploads

        done = memory_storage.create_uploaded_file(user.id, "done.txt", "done.txt", "text/plain")
        memory_storage.set_file_status(done.id, FileStatus.COMPLETED, "text")
        done.created_at = datetime.now(timezone.utc) - timedelta(hours=2)

        asyncio.run(recover_stale_uploads())

        assert done.status == "completed"
        assert done.extracted_text == "text"

    def test_orphaned_uploads_removed(self, memory_storage, upload_dir):
        from studyforge.jobs.stale_uploads import recover_stale_uploads

        old = _stored_upload(upload_dir, "orphan.txt", b"left behind")
        two_hours_ago = time.time() - 2 * 3600
        os.utime(old, (two_hours_ago, two_hours_ago))
        recent = _stored_upload(upload_dir, "in-flight.txt", b"still extracting")

        asyncio.run(recover_stale_uploads())

        assert not os.path.exists(old)
        assert os.path.exists(recent)
        os.remove(recent)

    def test_scheduler_registers_recovery_job(self):
        from studyforge.services.scheduler import register_jobs, scheduler

        register_jobs()
        job = scheduler.get_job("stale_upload_recovery")
        assert job is not None
        assert job.func.__name__ == "recover_stale_uploads"
        scheduler.remove_job("stale_upload_recovery")
