import pytest
from fastapi.testclient import TestClient

from classbooking.main import app, get_store
from classbooking.orders import OrderService
from tests.fakes import FakeInventoryStore

LESSONS = [
    {"subject": "Math", "location": "Hendon", "price": 100, "spaces": 5},
    {"subject": "English", "location": "Colindale", "price": 80, "spaces": 1},
    {"subject": "Art", "location": "Math Centre", "price": 95, "spaces": 0},
    {"subject": "Applied Mathematics", "location": "Brent Cross", "price": 2, "spaces": 3},
    {"subject": "Music", "location": "Golders Green", "price": 70, "spaces": 2},
]


@pytest.fixture()
def store():
    return FakeInventoryStore(LESSONS)


@pytest.fixture()
def ids(store):
    """Lesson ids keyed by subject."""
    return {d["subject"]: str(oid) for oid, d in store.lessons.items()}


@pytest.fixture()
def service(store):
    return OrderService(store)


@pytest.fixture()
def client(store):
    app.dependency_overrides[get_store] = lambda: store
    yield TestClient(app)
    app.dependency_overrides.clear()
