import os
import tempfile
from datetime import datetime, timedelta

import pytest

# Antes de importar nada del paquete: la app no debe tocar la base de datos local
os.environ.setdefault(
    "DATABASE_URL",
    f"sqlite:///{os.path.join(tempfile.mkdtemp(prefix='oracle_league_'), 'app.db')}",
)

from fastapi.testclient import TestClient  # noqa: E402

from oracle_league.core.clock import utcnow  # noqa: E402
from oracle_league.core.config import settings  # noqa: E402
from oracle_league.core.deps import get_db  # noqa: E402
from oracle_league.core.security import create_access_token  # noqa: E402
from oracle_league.db.models.user import User  # noqa: E402
from oracle_league.db.session import init_db, make_engine, make_session_factory  # noqa: E402
from oracle_league.schemas.prediction import PredictionCreate  # noqa: E402
from oracle_league.services import prediction_store  # noqa: E402
from oracle_league.services.leaderboard import leaderboard_cache  # noqa: E402

NOW = datetime(2026, 9, 10, 12, 0, 0)


@pytest.fixture
def engine(tmp_path):
    # Fichero y no :memory: para que varios hilos compartan la misma base de datos
    engine = make_engine(f"sqlite:///{tmp_path / 'test.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture(autouse=True)
def clean_leaderboard_cache():
    leaderboard_cache.invalidate()
    yield
    leaderboard_cache.invalidate()


@pytest.fixture
def patient_storage(monkeypatch):
    """Más reintentos para los tests con muchos escritores simultáneos."""
    monkeypatch.setattr(settings, "STORAGE_MAX_RETRIES", 20)
    monkeypatch.setattr(settings, "STORAGE_INITIAL_BACKOFF", 0.01)


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make_user(username=None, role="user"):
        counter["n"] += 1
        user = User(username=username or f"user{counter['n']}", role=role)
        db.add(user)
        db.commit()
        return user

    return _make_user


@pytest.fixture
def make_prediction(db):
    def _make_prediction(now=NOW, **overrides):
        data = {
            "season": 2026,
            "week": 1,
            "question": "¿Quién gana el partido?",
            "options": ["Home", "Away"],
            "oracle_choice_index": 0,
            "oracle_confidence": 70,
            "oracle_rationale": "Local con mejor defensa",
            "expires_at": now + timedelta(days=2),
        }
        data.update(overrides)
        return prediction_store.create_prediction(db, PredictionCreate(**data), now=now)

    return _make_prediction


# -----------------------
# API
# -----------------------
@pytest.fixture
def client(session_factory):
    from main import app

    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    def _auth_headers(user: User) -> dict:
        return {"Authorization": f"Bearer {create_access_token({'sub': str(user.id)})}"}

    return _auth_headers


@pytest.fixture
def api_prediction(make_prediction):
    """Predicción que caduca respecto al reloj real (la API usa utcnow)."""
    def _api_prediction(**overrides):
        now = utcnow()
        return make_prediction(now=now, **overrides)

    return _api_prediction
