"""
Shared test fixtures
====================

- SQLite database under tmp_path (DATABASE_URL + reset_engine)
- Local blob storage under tmp_path
- Two organizations with one user each
- A scripted analyzer standing in for the completion API
"""

import asyncio
from typing import List, Optional

import pytest

from contract_analysis.db.models import Organization, User, UserRole
from contract_analysis.db.session import init_db, new_session, reset_engine
from contract_analysis.llm.base import LLMCallResult
from contract_analysis.storage import LocalStorage


@pytest.fixture
def db_url(tmp_path, monkeypatch):
    """Fresh SQLite database for one test"""
    url = f"sqlite:///{tmp_path / 'test.db'}"
    monkeypatch.setenv("DATABASE_URL", url)
    reset_engine()
    init_db()
    yield url
    reset_engine()


@pytest.fixture
def db_session(db_url):
    session = new_session()
    yield session
    session.close()


@pytest.fixture
def storage(tmp_path):
    return LocalStorage(
        base_path=str(tmp_path / "blobs"),
        signing_secret="test-signing-secret",
        public_base_url="http://testserver",
    )


@pytest.fixture
def tenants(db_session):
    """Two organizations, one member each"""
    org_a = Organization(name="Acme Corp")
    org_b = Organization(name="Globex")
    db_session.add_all([org_a, org_b])
    db_session.flush()

    user_a = User(organization_id=org_a.id, email="alice@acme.test", name="Alice", role=UserRole.ADMIN)
    user_b = User(organization_id=org_b.id, email="bob@globex.test", name="Bob", role=UserRole.MEMBER)
    db_session.add_all([user_a, user_b])
    db_session.commit()

    return {"org_a": org_a, "org_b": org_b, "user_a": user_a, "user_b": user_b}


class ScriptedAnalyzer:
    """Returns a fixed completion; records the texts it was asked about"""

    def __init__(
        self,
        content: str = "{}",
        success: bool = True,
        error: Optional[str] = None,
        error_kind: Optional[str] = None,
        delay: float = 0,
    ):
        self.content = content
        self.success = success
        self.error = error
        self.error_kind = error_kind
        self.delay = delay
        self.calls: List[str] = []
        self.closed = False

    async def complete(self, text_content: str) -> LLMCallResult:
        self.calls.append(text_content)
        if self.delay:
            await asyncio.sleep(self.delay)
        return LLMCallResult(
            content=self.content if self.success else "",
            model="scripted",
            success=self.success,
            error=self.error,
            error_kind=self.error_kind,
        )

    async def close(self):
        self.closed = True


@pytest.fixture
def scripted_analyzer():
    """Factory for ScriptedAnalyzer"""
    return ScriptedAnalyzer


class RecordingDispatcher:
    """Dispatcher that only records what it was given"""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.requests = []

    def submit(self, request):
        if self.fail:
            raise RuntimeError("dispatch unavailable")
        self.requests.append(request)

    async def drain(self, timeout=None):
        return None

    async def close(self):
        return None


@pytest.fixture
def recording_dispatcher():
    return RecordingDispatcher()
