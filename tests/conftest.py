"""Pytest configuration and fixtures."""

import os

# Set test configuration BEFORE any ekicho imports
# This must be done before ekicho.core.config loads settings
os.environ["DEBUG"] = "true"
os.environ.setdefault("SECRET_PII_HASH", "test-pii-hash-secret-with-at-least-32-characters")
os.environ.setdefault("FIREBASE_PROJECT_ID", "ekicho-test")
os.environ.setdefault("MIGRATION_RETRY_BACKOFF_SECONDS", "0")
os.environ["OTEL_ENABLED"] = "false"
os.environ["OTEL_SDK_DISABLED"] = "true"

from collections.abc import Generator
from typing import Any

import pytest
from ekicho.core.config import Settings, settings
from ekicho.core.identity import AuthenticatedUser, IdentitySession, clear_jwks_cache, set_mock_jwks
from ekicho.core.local_store import LocalStore
from ekicho.services.migration_service import MigrationService
from ekicho.services.sync_service import SyncService
from ekicho.state.store import StateStore

from tests.helpers.fakes import FakeRedis, InMemoryDocumentStore
from tests.helpers.jwt_helpers import MockJWTGenerator
from tests.helpers.test_data import make_unique_user_id

# Auth fixtures


@pytest.fixture
def mock_jwks() -> dict[str, Any]:
    """
    Provide mock JWKS for dependency injection in tests.

    Returns:
        Mock JWKS dictionary with test public keys
    """
    return MockJWTGenerator.get_mock_jwks()


@pytest.fixture(scope="session", autouse=True)
def setup_mock_jwks() -> None:
    """
    Initialize mock JWKS for DEBUG mode ID token verification.

    Automatically runs once per test session to configure RSA key pairs
    for mock token signature verification in tests.
    """
    set_mock_jwks(MockJWTGenerator.get_mock_jwks())


@pytest.fixture
def reset_jwks_cache() -> Generator[None]:
    """
    Reset JWKS cache before and after test.

    Yields:
        None
    """
    clear_jwks_cache()
    yield
    clear_jwks_cache()


@pytest.fixture
def user_id() -> str:
    """Unique user id for the signed-in test user."""
    return make_unique_user_id()


@pytest.fixture
def mock_id_token(user_id: str) -> str:
    """
    RS256-signed mock ID token for ``user_id``.

    Returns:
        Valid token string with Firebase-style claims
    """
    return MockJWTGenerator.generate(user_id, name="Test User", email="test@example.com")


@pytest.fixture
def identity() -> IdentitySession:
    """Identity session with nobody signed in."""
    return IdentitySession()


@pytest.fixture
def signed_in_identity(identity: IdentitySession, user_id: str) -> IdentitySession:
    """Identity session with the test user already signed in."""
    identity.set_user(AuthenticatedUser(uid=user_id, display_name="Test User", email="test@example.com"))
    return identity


# Storage fixtures


@pytest.fixture
def documents() -> InMemoryDocumentStore:
    """Empty in-memory document store."""
    return InMemoryDocumentStore()


@pytest.fixture
def fake_redis() -> FakeRedis:
    """Dict-backed Redis stand-in."""
    return FakeRedis()


@pytest.fixture
def local_store(fake_redis: FakeRedis) -> LocalStore:
    """Local store over the fake Redis, with an empty key prefix for readable assertions."""
    return LocalStore(fake_redis, prefix="")


# Service fixtures


@pytest.fixture
def state_store() -> StateStore:
    """Fresh state container."""
    return StateStore()


@pytest.fixture
def sync_service(
    documents: InMemoryDocumentStore,
    signed_in_identity: IdentitySession,
    state_store: StateStore,
) -> SyncService:
    """SyncService for the signed-in test user."""
    return SyncService(documents, signed_in_identity, state_store)


@pytest.fixture
def migration_service(documents: InMemoryDocumentStore, local_store: LocalStore) -> MigrationService:
    """MigrationService with retries but no backoff delay."""
    return MigrationService(documents, local_store, max_attempts=3, retry_backoff_seconds=0)


# Settings fixture


@pytest.fixture
def settings_fixture() -> Settings:
    """
    Provide settings instance for tests.

    Returns:
        Settings instance
    """
    return settings
