from typing import NamedTuple

import mongomock
import pytest
from fastapi.testclient import TestClient

import auth
import database
from schemas import Identity


class User(NamedTuple):
    token: str
    identity: Identity

    @property
    def headers(self):
        return {"Authorization": f"Bearer {self.token}"}

    @property
    def email(self):
        return self.identity.email


@pytest.fixture(autouse=True)
def store(monkeypatch):
    db = mongomock.MongoClient()["aidlink-test"]
    monkeypatch.setattr(database, "db", db)
    return db


@pytest.fixture
def alice():
    return User(*auth.sign_in("alice@example.com", "Alice"))


@pytest.fixture
def bob():
    return User(*auth.sign_in("bob@example.com", "Bob"))


@pytest.fixture
def carol():
    return User(*auth.sign_in("carol@example.com", "Carol"))


@pytest.fixture
def client():
    from main import app

    with TestClient(app) as c:
        yield c
