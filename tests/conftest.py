from datetime import datetime, timezone

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from recruitflow import models  # noqa: F401
from recruitflow import services
from recruitflow.app import app
from recruitflow.communication import RelayClient
from recruitflow.config import Settings, get_settings
from recruitflow.database import get_session
from recruitflow.feed import CandidateFeed, get_feed
from recruitflow.functions import get_http_client
from recruitflow.models import Candidate
from recruitflow.preferences import PreferenceStore
from recruitflow.realtime import event_bus
from recruitflow.routes import get_relay_client


class FakeUpstream:
    """Canned HTTP responses keyed by method and host+path prefix; records every request."""

    def __init__(self):
        self.routes = []
        self.requests = []

    def add(self, method, prefix, status=200, json=None):
        self.routes.insert(0, (method, prefix, status, json if json is not None else {}))

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        target = request.url.host + request.url.path
        for method, prefix, status, body in self.routes:
            if request.method == method and target.startswith(prefix):
                return httpx.Response(status, json=body)
        return httpx.Response(404, json={"error": f"no route for {request.method} {target}"})

    def client(self) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(self.handler))

    def requests_to(self, prefix):
        return [r for r in self.requests if (r.url.host + r.url.path).startswith(prefix)]


@pytest.fixture(name="engine")
def engine_fixture():
    """Create an in-memory SQLite database for testing."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    return engine


@pytest.fixture(name="session")
def session_fixture(engine):
    """Create a database session for testing."""
    with Session(engine) as session:
        yield session


@pytest.fixture(name="feed")
def feed_fixture():
    """A candidate feed subscribed to the change feed for the duration of a test."""
    feed = CandidateFeed()
    feed.attach(event_bus)
    yield feed
    feed.close()


@pytest.fixture(name="settings")
def settings_fixture(tmp_path):
    return Settings(
        _env_file=None,
        database_url="sqlite://",
        preferences_path=tmp_path / "preferences.json",
        functions_base_url="http://relay.test/functions",
        twilio_account_sid="AC123",
        twilio_auth_token="twilio-secret",
        twilio_phone_number="+15550000000",
        google_client_id="client-id",
        google_client_secret="client-secret",
        google_refresh_token="refresh-token",
        gmail_user="recruiter@example.com",
    )


@pytest.fixture(name="preferences")
def preferences_fixture(settings):
    return PreferenceStore(settings.preferences_path)


@pytest.fixture(name="upstream")
def upstream_fixture():
    """Stand-in for Twilio and the Google APIs."""
    return FakeUpstream()


@pytest.fixture(name="relay_service")
def relay_service_fixture():
    """Stand-in for the deployed relay functions, as seen by the communication client."""
    return FakeUpstream()


@pytest.fixture(name="relay_client")
def relay_client_fixture(settings, relay_service):
    with relay_service.client() as client:
        yield RelayClient(settings.functions_base_url, client)


@pytest.fixture(name="client")
def client_fixture(engine, feed, settings, upstream, relay_client):
    """Create a test client with overridden database session, feed and outbound HTTP."""

    def get_session_override():
        with Session(engine) as session:
            yield session

    def get_http_client_override():
        with upstream.client() as http:
            yield http

    app.dependency_overrides[get_session] = get_session_override
    app.dependency_overrides[get_feed] = lambda: feed
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_http_client] = get_http_client_override
    app.dependency_overrides[get_relay_client] = lambda: relay_client
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()


def load_feed(feed, session):
    feed.bulk_load(lambda: [services.row_payload(c) for c in services.list_candidates(session)])


@pytest.fixture(name="sample_candidate")
def sample_candidate_fixture(session, feed):
    """Create a sample candidate in the database."""
    candidate = Candidate(
        first_name="John",
        last_name="Doe",
        email="john@example.com",
        phone="+15551234567",
        location="Seattle, WA",
        position="Software Engineer",
        department="Engineering",
        current_position="Senior Engineer",
        current_company="Google",
        years_of_experience=6,
        source="LinkedIn",
        applied_date=datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc),
        created_at=datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc),
    )
    session.add(candidate)
    session.commit()
    session.refresh(candidate)
    load_feed(feed, session)
    return candidate


@pytest.fixture(name="multiple_candidates")
def multiple_candidates_fixture(session, feed):
    """Create candidates across the pipeline in the database."""
    candidates = [
        Candidate(
            first_name="Alice",
            last_name="Smith",
            email="alice@example.com",
            position="ML Researcher",
            status="screening",
            stage="Phone Screen",
            qualified="qualified",
            created_at=datetime(2024, 1, 3, tzinfo=timezone.utc),
        ),
        Candidate(
            first_name="Bob",
            last_name="Jones",
            email="bob@example.com",
            position="Data Scientist",
            status="interview",
            stage="Technical Interview",
            resume_received=True,
            created_at=datetime(2024, 1, 2, tzinfo=timezone.utc),
        ),
        Candidate(
            first_name="Carol",
            last_name="Williams",
            email="carol@example.com",
            position="Research Scientist",
            status="offer",
            stage="Offer Extended",
            viewed=True,
            rating=5,
            created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
        ),
    ]
    for c in candidates:
        session.add(c)
    session.commit()
    for c in candidates:
        session.refresh(c)
    load_feed(feed, session)
    return candidates
