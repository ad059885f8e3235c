"""
Shared test fixtures for the LifeRPG API.

- settings / db_session: in-memory SQLite, fresh for every test
- fake_ai: stands in for the OpenAI-backed AIService
- weather_service: real WeatherService over httpx.MockTransport
- client / auth_headers: FastAPI TestClient wired to all of the above
"""

import httpx
import pytest
from fastapi.testclient import TestClient

from ai import JournalAnalysis, TaskSuggestions, AIServiceError
from config import Settings
from database import create_db_engine, create_session_factory, init_db
from main import create_app
from models import User, CharacterStat
from weather import WeatherService


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeAI:
    """
    Same methods as AIService. Answers are set per test; setting
    `fail = True` makes every call raise like a network failure would.
    """

    configured = True

    def __init__(self):
        self.fail = False
        self.reply = "What made today feel that way?"
        self.analysis = JournalAnalysis(
            title="A good day",
            synopsis="Worked out and read.",
            tone_tags=["happy"],
            day_rating=4,
        )
        self.suggestions = TaskSuggestions(
            personal=[{"title": "Go for a run", "stat": "Strength", "xp_reward": 20}],
            family=[{"title": "Board games night", "family_member": None, "xp_reward": 15}],
        )
        self.calls = []
        self.last_history = None

    def _maybe_fail(self, name):
        self.calls.append(name)
        if self.fail:
            raise AIServiceError("The AI service is unavailable, please try again")

    def reflection_reply(self, content, history):
        self._maybe_fail("reflection_reply")
        self.last_history = history
        return self.reply

    def analyze_journal(self, content, history, stat_names, family_names):
        self._maybe_fail("analyze_journal")
        return self.analysis

    def suggest_tasks(self, context):
        self._maybe_fail("suggest_tasks")
        self.last_context = context
        return self.suggestions


def weather_payload(temp=70.0, main="Clear", wind=5.0, description="clear sky"):
    return {
        "name": "Springfield",
        "main": {"temp": temp, "feels_like": temp, "humidity": 40},
        "wind": {"speed": wind, "deg": 180},
        "weather": [{"main": main, "description": description}],
    }


class WeatherStub:
    """Programmable OpenWeatherMap: set `status` / `payload`, read `requests`"""

    def __init__(self):
        self.status = 200
        self.payload = weather_payload()
        self.requests = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status, json=self.payload)


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

@pytest.fixture()
def settings():
    return Settings(
        database_url="sqlite://",
        secret_key="test-secret-key",
        weather_api_key="test-weather-key",
    )


@pytest.fixture()
def session_factory(settings):
    engine = create_db_engine(settings.database_url)
    init_db(engine)
    yield create_session_factory(engine)
    engine.dispose()


@pytest.fixture()
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture()
def user(db_session):
    u = User(email="hero@example.com", password_hash="x", name="Hero", timezone="UTC")
    db_session.add(u)
    db_session.commit()
    return u


@pytest.fixture()
def stat(db_session, user):
    s = CharacterStat(user_id=user.id, name="Fitness")
    db_session.add(s)
    db_session.commit()
    return s


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------

@pytest.fixture()
def fake_ai():
    return FakeAI()


@pytest.fixture()
def weather_stub():
    return WeatherStub()


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def weather_service(weather_stub, clock):
    http = httpx.Client(transport=httpx.MockTransport(weather_stub.handler))
    service = WeatherService(api_key="test-weather-key", ttl_seconds=300, http_client=http, clock=clock)
    yield service
    service.close()


# ---------------------------------------------------------------------------
# API
# ---------------------------------------------------------------------------

@pytest.fixture()
def app(settings, fake_ai, weather_service, session_factory):
    return create_app(
        settings=settings,
        ai=fake_ai,
        weather=weather_service,
        session_factory=session_factory,
    )


@pytest.fixture()
def client(app):
    return TestClient(app)


def _register(client, email="player@example.com", name="Player", **extra):
    resp = client.post("/api/auth/register", json={
        "email": email, "password": "secret123", "name": name, **extra
    })
    assert resp.status_code == 201, resp.text
    return {"Authorization": f"Bearer {resp.json()['data']['access_token']}"}


@pytest.fixture()
def register_user(client):
    """Registers through the API and returns the Authorization header"""
    def _do(email="player@example.com", name="Player", **extra):
        return _register(client, email, name, **extra)
    return _do


@pytest.fixture()
def auth_headers(register_user):
    return register_user()
