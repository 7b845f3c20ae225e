"""
School election core - test configuration and fixtures
"""
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from schoolvote.api import create_app
from schoolvote.auth import issue_session_token
from schoolvote.config import MEMORY_DATABASE_URL, Settings
from schoolvote.models import AccessLevel
from schoolvote.persistence import InMemoryRecordStore
from schoolvote.services import build_services

TEST_SECRET = "test-jwt-secret-for-testing-only"

NOW = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def settings() -> Settings:
    return Settings(database_url=MEMORY_DATABASE_URL, jwt_secret=TEST_SECRET, max_activities=100)


@pytest.fixture
def store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def services(settings, store):
    return build_services(settings, store)


@pytest.fixture
def registry(services):
    return services.students


@pytest.fixture
def display_store(services):
    return services.display_settings


@pytest.fixture
def lifecycle(services):
    return services.elections


@pytest.fixture
def ballot_box(services):
    return services.ballots


@pytest.fixture
def student_data():
    """A valid new student"""
    return {
        "id": 10001,
        "classNumber": 1,
        "name": "Somchai",
        "surname": "Jaidee",
        "classroom": "M.6/1",
        "nationalId": "1100000000001",
    }


@pytest.fixture
def roster(registry):
    """Five students across two classrooms"""
    rows = [
        (10001, "Somchai", "Jaidee", "M.6/1", "1100000000001"),
        (10002, "Suda", "Rakdee", "M.6/1", "1100000000002"),
        (10003, "Anan", "Sukjai", "M.6/1", "1100000000003"),
        (10004, "Malee", "Thongdee", "M.6/2", "1100000000004"),
        (10005, "Preecha", "Meesuk", "M.6/2", "1100000000005"),
    ]
    for student_id, name, surname, classroom, national_id in rows:
        result = registry.add_student({
            "id": student_id,
            "name": name,
            "surname": surname,
            "classroom": classroom,
            "national_id": national_id,
        })
        assert result.success
    return registry.get_all_students()


@pytest.fixture
def open_election(lifecycle):
    """A student-committee election running around NOW"""
    return lifecycle.create_election({
        "title": "Student Committee 2025",
        "type": "student-committee",
        "startDate": NOW - timedelta(days=1),
        "endDate": NOW + timedelta(days=1),
    })


@pytest.fixture
def draft_election(lifecycle):
    """A student-committee election that starts a day after NOW"""
    return lifecycle.create_election({
        "title": "Student Committee 2026",
        "type": "student-committee",
        "startDate": NOW + timedelta(days=1),
        "endDate": NOW + timedelta(days=2),
    })


@pytest.fixture
def client(services, settings):
    return TestClient(create_app(services, settings))


@pytest.fixture
def auth_headers():
    """Build bearer headers for a session at the given access level"""
    def build(level: AccessLevel, identity: str = "1") -> dict:
        token = issue_session_token(identity, level, TEST_SECRET, hours=1)
        return {"Authorization": f"Bearer {token}"}
    return build
