import os
import sys
import tempfile
import threading
import uuid
from datetime import datetime, timezone

import pytest
from jose import jwt
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

# Settings are read on import; point them at throwaway state before any app import
_STATE_DIR = tempfile.mkdtemp(prefix="extraction-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{os.path.join(_STATE_DIR, 'app.db')}")
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("AUTH_JWT_SECRET", "test-secret")
os.environ.setdefault("ENABLE_REQUEST_LOGGING", "false")
os.environ.setdefault("ENABLE_OUTBOUND_LOGGING", "false")

# Ensure project root is on sys.path for 'app' imports
PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from app.core.cache import InMemoryCache
from app.core.config import settings
from app.core import rate_limit
from app.db.base_class import Base
from app.db import base as models_import  # noqa: F401 - ensure models are imported
from app.db.models.job import ExtractionJob
from app.services.exceptions import DocumentNotFoundError


class FakeStore:
    """In-memory document store keyed by (bucket, path)."""

    def __init__(self):
        self.objects = {}
        self.upload_urls = []

    def put(self, bucket, path, data):
        self.objects[(bucket, path)] = data

    def download(self, bucket, path, max_bytes=None):
        try:
            return self.objects[(bucket, path)]
        except KeyError:
            raise DocumentNotFoundError(bucket, path)

    def create_upload_url(self, bucket, path, expires):
        url = f"https://storage.test/{bucket}/{path}?signed=1"
        self.upload_urls.append(url)
        return url


class FakeModel:
    """Returns canned responses per document bytes; a response may be an exception."""

    def __init__(self, default=None):
        self.responses = {}
        self.default = default
        self.calls = []
        self._lock = threading.Lock()

    def respond(self, data, response):
        self.responses[data] = response

    def generate(self, instruction, data, mime_type, response_schema=None, job_id=None):
        with self._lock:
            self.calls.append({"data": data, "mime_type": mime_type, "job_id": job_id})
        response = self.responses.get(data, self.default)
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(job_id)
        return response


class FakeGeocoder:
    def __init__(self, results=None, fail=False):
        self.results = results or {}
        self.fail = fail
        self.calls = []

    def geocode(self, address):
        self.calls.append(address)
        if self.fail:
            raise RuntimeError("geocoder down")
        return self.results.get(address)


INVOICE_JSON = '{"totalAmount": 123.45, "currency": "EUR", "vendorName": "Fuel Co"}'
CALLSHEET_JSON = (
    '{"date": "2025-03-14", "projectName": "Night Shift", '
    '"productionCompanies": ["Acme Films"], '
    '"locations": ["Calle Mayor 1, Madrid", "Plaza de Espana, Madrid"]}'
)


@pytest.fixture
def engine(tmp_path):
    db_path = tmp_path / "test.db"
    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def make_job(session_factory):
    """Insert a job row directly and return its id."""

    def _make(user_id="user-1", kind="invoice", status="queued", storage_path=None, **fields):
        job_id = fields.pop("id", None) or str(uuid.uuid4())
        with session_factory() as s:
            s.add(ExtractionJob(
                id=job_id,
                user_id=user_id,
                kind=kind,
                status=status,
                storage_path=storage_path or f"{user_id}/{job_id}/doc.pdf",
                **fields,
            ))
            s.commit()
        return job_id

    return _make


@pytest.fixture
def get_job(session_factory):
    def _get(job_id):
        with session_factory() as s:
            job = s.get(ExtractionJob, job_id)
            s.expunge(job)
            return job

    return _get


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def model():
    return FakeModel(default=INVOICE_JSON)


@pytest.fixture
def cache():
    return InMemoryCache()


@pytest.fixture(autouse=True)
def fresh_rate_limits(monkeypatch):
    monkeypatch.setattr(rate_limit.queue_rate_limiter, "_cache", InMemoryCache())
    monkeypatch.setattr(rate_limit.worker_rate_limiter, "_cache", InMemoryCache())


def make_token(user_id, expires_in=3600):
    now = int(datetime.now(timezone.utc).timestamp())
    claims = {"sub": user_id, "aud": settings.AUTH_JWT_AUDIENCE, "iat": now, "exp": now + expires_in}
    return jwt.encode(claims, settings.AUTH_JWT_SECRET, algorithm=settings.AUTH_JWT_ALGORITHM)


def auth_headers(user_id):
    return {"Authorization": f"Bearer {make_token(user_id)}"}


@pytest.fixture
def add_usage(session_factory):
    """Record `count` done usage events for a user at `run_at` (default now)."""
    from app.db.models.usage_event import AiUsageEvent

    def _add(user_id, count, run_at=None):
        when = run_at or datetime.now(timezone.utc)
        with session_factory() as s:
            for _ in range(count):
                s.add(AiUsageEvent(user_id=user_id, kind="invoice", job_id=str(uuid.uuid4()), run_at=when))
            s.commit()

    return _add


@pytest.fixture
def client(session_factory, store, model, cache):
    from fastapi.testclient import TestClient

    from main import app
    from app.api.dependencies.database import get_db
    from app.api.dependencies import services

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[services.get_session_factory] = lambda: session_factory
    app.dependency_overrides[services.get_document_store] = lambda: store
    app.dependency_overrides[services.get_extraction_model] = lambda: model
    app.dependency_overrides[services.get_geocoder] = lambda: FakeGeocoder()
    app.dependency_overrides[services.get_app_cache] = lambda: cache

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
