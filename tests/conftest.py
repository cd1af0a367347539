import os
import tempfile
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

# Settings are read once at import time, so the environment has to be in place
# before anything from studyforge is imported.
_TEST_ROOT = tempfile.mkdtemp(prefix="studyforge-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TEST_ROOT, 'test_studyforge.db')}"
os.environ["UPLOAD_DIR"] = os.path.join(_TEST_ROOT, "uploads")
os.environ["STORAGE_BACKEND"] = "database"
os.environ["LOG_TO_FILE"] = "false"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["ANTHROPIC_API_KEY"] = "test-key"
os.environ["SECRET_KEY"] = "test-secret-key-for-pytest-only-0123456789"

PASSWORD = "Password123!"


@pytest.fixture(scope="session")
def app():
    import main as main_module
    from studyforge.db.database import Base, engine

    app_instance = main_module.app
    app_instance.router.on_startup.clear()
    app_instance.router.on_shutdown.clear()

    Base.metadata.create_all(bind=engine)
    return app_instance


@pytest.fixture()
def db_session(app):
    from studyforge.db.database import SessionLocal
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture()
def upload_dir(app):
    from studyforge.core.config import settings
    os.makedirs(settings.upload_dir, exist_ok=True)
    return settings.upload_dir


# ── Helpers ──────────────────────────────────────────────────


def register(client, email, password=PASSWORD):
    """Register ``email`` unless it already exists in the session database."""
    resp = client.post("/api/auth/register", json={"email": email, "password": password})
    assert resp.status_code in (200, 400), resp.text
    return resp


def auth_headers(client, email):
    register(client, email)
    resp = client.post("/api/auth/login", data={"username": email, "password": PASSWORD})
    assert resp.status_code == 200, resp.text
    return {"Authorization": f"Bearer {resp.json()['access_token']}"}


class FakeMessages:
    """Stands in for ``AsyncAnthropic().messages``; replies are picked by system prompt."""

    def __init__(self, flashcards_reply: str, quiz_reply: str, error: Exception | None = None):
        self.flashcards_reply = flashcards_reply
        self.quiz_reply = quiz_reply
        self.error = error
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        reply = self.flashcards_reply if '"flashcards"' in kwargs["system"] else self.quiz_reply
        # The assistant turn was pre-filled with "{", so the reply continues after it
        if reply.startswith("{"):
            reply = reply[1:]
        return SimpleNamespace(
            content=[SimpleNamespace(type="text", text=reply)],
            usage=SimpleNamespace(input_tokens=10, output_tokens=20),
        )


class FakeAnthropic:
    def __init__(self, flashcards_reply='{"flashcards": []}', quiz_reply='{"questions": []}', error=None):
        self.messages = FakeMessages(flashcards_reply, quiz_reply, error)
        self.closed = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        self.closed = True


@pytest.fixture()
def fake_ai(monkeypatch):
    """Install a fake Anthropic client; returns a setter for its replies."""
    from studyforge.services import ai_service

    holder = {"client": FakeAnthropic()}
    monkeypatch.setattr(ai_service, "get_anthropic_client", lambda: holder["client"])

    def configure(**kwargs):
        holder["client"] = FakeAnthropic(**kwargs)
        return holder["client"]

    return configure
