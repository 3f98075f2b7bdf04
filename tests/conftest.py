from datetime import datetime, timedelta, timezone

import mongomock
import pytest
from fastapi.testclient import TestClient

import main
from database import Store
from reservations import ReservationEngine
from security import CredentialHasher, TokenIssuer
from services import BookService, UserService

TEST_SECRET = "test-secret-key-long-enough-for-hs256-signing"


@pytest.fixture
def store():
    # A fresh in-memory database for every test
    db = mongomock.MongoClient()["biblioteca_test"]
    s = Store(db)
    s.ensure_indexes()
    return s


@pytest.fixture
def hasher():
    return CredentialHasher(rounds=4)


@pytest.fixture
def tokens():
    return TokenIssuer(secret=TEST_SECRET, algorithm="HS256", ttl=timedelta(minutes=5))


@pytest.fixture
def users(store, hasher):
    return UserService(store, hasher)


@pytest.fixture
def books(store):
    return BookService(store)


@pytest.fixture
def engine(store):
    return ReservationEngine(store)


@pytest.fixture
def tomorrow():
    return datetime.now(timezone.utc) + timedelta(days=1)


@pytest.fixture
def client(store, hasher, tokens):
    main.app.dependency_overrides[main.get_store] = lambda: store
    main.app.dependency_overrides[main.get_hasher] = lambda: hasher
    main.app.dependency_overrides[main.get_tokens] = lambda: tokens
    try:
        yield TestClient(main.app)
    finally:
        main.app.dependency_overrides.clear()


@pytest.fixture
def make_user(client):
    """Register a user through the API, log in, and return (id, auth headers)."""
    counter = {"n": 0}

    def _make(permisos=None, nombre=None):
        counter["n"] += 1
        correo = f"user{counter['n']}@test.com"
        res = client.post("/api/users", json={
            "nombre": nombre or f"Usuario {counter['n']}",
            "correo": correo,
            "contraseña": "pass123",
            "permisos": permisos or [],
        })
        assert res.status_code == 201
        user_id = res.json()["user"]["id"]
        res = client.post("/api/login", json={"correo": correo, "contraseña": "pass123"})
        assert res.status_code == 200
        return user_id, {"Authorization": f"Bearer {res.json()['token']}"}

    return _make
