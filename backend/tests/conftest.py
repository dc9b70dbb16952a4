"""
Pytest configuration and fixtures for the backend tests.
"""
import os

# Settings are read at import time; pin a test configuration first.
os.environ["SECRET_KEY"] = "test-secret-key-not-for-production"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./test_authgate.db"
os.environ["USE_MONGO"] = "false"
os.environ["STATE_STORE_BACKEND"] = "memory"
os.environ["EMAIL_BACKEND"] = "console"
os.environ["LOG_TO_FILE"] = "false"
os.environ["RESET_REQUEST_LIMIT"] = "5"

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pytest
from faker import Faker
from fastapi.testclient import TestClient

from api.dependencies import get_notifier, get_state_store
from main import app
from services.credential_store import CredentialStore, UserRecord
from services.otp import normalize_email
from services.password_reset import PasswordResetService
from services.state_store import InMemoryStateStore
from utils.email import NotificationSender

# Initialize Faker for test data generation
fake = Faker()


class FakeClock:
    """Controllable time source shared by the store (monotonic) and services (wall clock)."""

    def __init__(self):
        self.offset = 0.0
        self.start = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> float:
        return 1000.0 + self.offset

    def now(self) -> datetime:
        return self.start + timedelta(seconds=self.offset)

    def advance(self, seconds: float) -> None:
        self.offset += seconds


class FakeCredentialStore(CredentialStore):
    def __init__(self):
        self.users: Dict[str, UserRecord] = {}
        self.fail_updates = False

    def add(self, email: str, hashed_password: str = "original-hash", name: str = "Test User") -> UserRecord:
        email = normalize_email(email)
        user = UserRecord(id=str(len(self.users) + 1), name=name, email=email, hashed_password=hashed_password)
        self.users[email] = user
        return user

    async def find_by_email(self, email: str) -> Optional[UserRecord]:
        return self.users.get(normalize_email(email))

    async def find_by_id(self, user_id: str) -> Optional[UserRecord]:
        return next((u for u in self.users.values() if u.id == user_id), None)

    async def create(self, name: str, email: str, hashed_password: str) -> UserRecord:
        return self.add(email, hashed_password, name)

    async def update_password_hash(self, email: str, hashed_password: str) -> bool:
        if self.fail_updates:
            raise RuntimeError("database unavailable")
        user = self.users.get(normalize_email(email))
        if not user:
            return False
        user.hashed_password = hashed_password
        return True


class RecordingNotifier(NotificationSender):
    def __init__(self):
        self.sent: List[Tuple[str, str]] = []
        self.deliver = True

    async def send_reset_otp(self, to_email: str, otp_code: str, ttl_minutes: int) -> bool:
        if not self.deliver:
            return False
        self.sent.append((to_email, otp_code))
        return True

    def last_otp(self, email: Optional[str] = None) -> str:
        for to_email, otp in reversed(self.sent):
            if email is None or to_email == normalize_email(email):
                return otp
        raise AssertionError(f"No OTP was sent to {email}")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def state_store(clock: FakeClock) -> InMemoryStateStore:
    return InMemoryStateStore(clock=clock)


@pytest.fixture
def credentials() -> FakeCredentialStore:
    return FakeCredentialStore()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def reset_service(state_store, credentials, notifier, clock) -> PasswordResetService:
    return PasswordResetService(
        state_store,
        credentials,
        notifier,
        ttl_seconds=600,
        hasher=lambda password: f"hashed:{password}",
        now=clock.now,
    )


@pytest.fixture
def api_store() -> InMemoryStateStore:
    return InMemoryStateStore()


@pytest.fixture
def client(api_store: InMemoryStateStore, notifier: RecordingNotifier):
    """Test client with a fresh state store and a recording notifier."""
    app.dependency_overrides[get_state_store] = lambda: api_store
    app.dependency_overrides[get_notifier] = lambda: notifier

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def sample_user_data():
    """Sample registration payload."""
    return {
        "name": fake.name(),
        "email": fake.unique.email(),
        "password": "secret123",
    }


@pytest.fixture(scope="session", autouse=True)
def cleanup_test_db():
    Path("test_authgate.db").unlink(missing_ok=True)
    yield
    Path("test_authgate.db").unlink(missing_ok=True)
