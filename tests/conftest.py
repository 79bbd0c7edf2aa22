import httpx
import pytest

from comicgen import gateway as gateway_module
from comicgen.core import settings as settings_module
from comicgen.db.base import Base
from comicgen.db.session import get_engine, init_engine
from comicgen.main import app
from comicgen.services import runner as runner_module
from comicgen.services.agent_client import AgentClient
from tests.fakes import FakeGemini, FakeSpeech


@pytest.fixture(autouse=True)
def _use_test_db(tmp_path, monkeypatch):
    # Output and media directories are relative to the working directory.
    monkeypatch.chdir(tmp_path)

    db_path = tmp_path / "test.db"
    database_url = f"sqlite+pysqlite:///{db_path}"

    monkeypatch.setattr(settings_module.settings, "database_url", database_url)
    monkeypatch.setattr(settings_module.settings, "db_auto_create", True)
    monkeypatch.setattr(settings_module.settings, "log_file", None)

    init_engine(database_url)
    Base.metadata.create_all(bind=get_engine())

    yield


@pytest.fixture()
def fake_gemini(monkeypatch):
    fake = FakeGemini()
    monkeypatch.setattr(runner_module, "_build_gemini_client", lambda: fake)
    return fake


@pytest.fixture()
def fake_speech(monkeypatch):
    fake = FakeSpeech()
    monkeypatch.setattr(runner_module, "_build_speech_client", lambda: fake)
    return fake


@pytest.fixture()
async def client():
    async with app.router.lifespan_context(app):
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            yield client


@pytest.fixture()
async def gateway_client(client, monkeypatch):
    """Gateway whose agent client talks to the in-process backend."""

    def build_agent_client():
        return AgentClient(
            base_url="http://localhost:8000",
            app_name=settings_module.settings.app_name,
            transport=httpx.ASGITransport(app=app),
        )

    monkeypatch.setattr(gateway_module, "_build_agent_client", build_agent_client)

    gateway_app = gateway_module.app
    async with gateway_app.router.lifespan_context(gateway_app):
        transport = httpx.ASGITransport(app=gateway_app)
        async with httpx.AsyncClient(transport=transport, base_url="http://gateway") as gw:
            yield gw
