"""
Pytest configuration and fixtures for backend tests.
"""

import os
import sys
from datetime import timedelta
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Add backend directory to path for imports
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

# Set test environment variables before importing config
os.environ["SECRET_KEY"] = "test-secret-key-for-testing-only"
os.environ["CORS_ORIGINS"] = '["http://localhost:3000"]'
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["RATE_LIMIT_BACKEND"] = "memory"
os.environ["AUDIT_DISPATCH_MODE"] = "inline"

from authentication.auth import create_access_token  # noqa: E402
from helpers.time_utils import utc_now  # noqa: E402
from repositories.database import Base, get_db  # noqa: E402
import repositories.db_models as db_models  # noqa: E402

# Test database engine (in-memory SQLite)
TEST_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(autouse=True)
def reset_pipeline_state():
    """Give every test fresh rate-limit counters, audit metrics and directory."""
    from services.audit_service import AuditService
    from services.expert_directory import set_expert_directory
    from services.rate_limit import InMemoryRateLimitStore, RateLimitService

    RateLimitService.use_store(InMemoryRateLimitStore())
    AuditService.use_dispatcher(None)
    AuditService.reset_metrics()
    set_expert_directory(None)
    yield
    RateLimitService.use_store(None)
    AuditService.use_dispatcher(None)
    set_expert_directory(None)


@pytest.fixture(scope="function")
def db_session():
    """Create a fresh in-memory database session for each test."""
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def session_factory(db_session):
    """Session factory bound to the test database (tables created)."""
    return TestingSessionLocal


@pytest.fixture(scope="function")
def db(db_session):
    """Alias for db_session."""
    return db_session


@pytest.fixture(scope="function")
def client(db_session):
    """Create a test client with overridden database dependency."""
    from main import app
    from helpers.rate_limiter import limiter

    # Reset rate limiter storage before each test to prevent rate limit errors
    limiter.reset()

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _make_user(db_session, username: str, **flags) -> db_models.User:
    flags.setdefault("is_active", True)
    user = db_models.User(
        email=f"{username}@example.com",
        username=username,
        display_name=username.title(),
        **flags,
    )
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture
def make_user(db_session):
    """Factory for extra users: make_user("name", is_moderator=True)."""

    def _factory(username: str, **flags) -> db_models.User:
        return _make_user(db_session, username, **flags)

    return _factory


@pytest.fixture
def test_user(db_session) -> db_models.User:
    """Create a regular user."""
    return _make_user(db_session, "testuser")


@pytest.fixture
def other_user(db_session) -> db_models.User:
    """Create a second regular user."""
    return _make_user(db_session, "otheruser")


@pytest.fixture
def admin_user(db_session) -> db_models.User:
    """Create a global admin user."""
    return _make_user(db_session, "adminuser", is_global_admin=True)


@pytest.fixture
def moderator_user(db_session) -> db_models.User:
    """Create a moderator."""
    return _make_user(db_session, "moderator", is_moderator=True)


@pytest.fixture
def expert_user(db_session) -> db_models.User:
    """Create a user with the Expert role and a verified profile."""
    user = _make_user(db_session, "expert", is_expert=True)
    profile = db_models.ExpertProfile(
        user_id=user.id,
        status=db_models.ExpertStatus.VERIFIED,
        field="cardiology",
        verified_at=utc_now() - timedelta(days=10),
        expires_at=utc_now() + timedelta(days=365),
    )
    db_session.add(profile)
    db_session.commit()
    return user


@pytest.fixture
def queue_item(db_session, test_user) -> db_models.QueueItem:
    """Create a pending report queue item about test_user's post."""
    item = db_models.QueueItem(
        queue_type=db_models.QueueType.REPORT,
        content_type="post",
        content_id="101",
        status=db_models.QueueItemStatus.PENDING,
        priority=db_models.QueuePriority.MEDIUM,
        subject_user_id=test_user.id,
        active_key=db_models.active_key_for("post", "101"),
    )
    db_session.add(item)
    db_session.commit()
    db_session.refresh(item)
    return item


@pytest.fixture
def article(db_session, test_user) -> db_models.Article:
    """Create an article with a stable rev 1 and a pending rev 2."""
    article = db_models.Article(slug="canine-parvovirus", title="Canine Parvovirus")
    db_session.add(article)
    db_session.flush()

    stable = db_models.Revision(
        article_id=article.id,
        rev=1,
        content_json='{"body": "Vaccinate puppies."}',
        status=db_models.RevisionStatus.STABLE,
        author_id=test_user.id,
    )
    pending = db_models.Revision(
        article_id=article.id,
        rev=2,
        content_json='{"body": "Garlic cures parvo."}',
        status=db_models.RevisionStatus.PENDING,
        author_id=test_user.id,
    )
    db_session.add_all([stable, pending])
    db_session.flush()
    article.current_revision_id = pending.id
    db_session.commit()
    db_session.refresh(article)
    return article


def _revision(article: db_models.Article, rev: int) -> db_models.Revision:
    return next(r for r in article.revisions if r.rev == rev)


@pytest.fixture
def stable_revision(article) -> db_models.Revision:
    return _revision(article, 1)


@pytest.fixture
def pending_revision(article) -> db_models.Revision:
    return _revision(article, 2)


def auth_headers_for(user: db_models.User) -> dict:
    token = create_access_token(data={"sub": user.email})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers(test_user) -> dict:
    """Get authentication headers for test user."""
    return auth_headers_for(test_user)


@pytest.fixture
def admin_auth_headers(admin_user) -> dict:
    return auth_headers_for(admin_user)


@pytest.fixture
def moderator_auth_headers(moderator_user) -> dict:
    return auth_headers_for(moderator_user)


@pytest.fixture
def expert_auth_headers(expert_user) -> dict:
    return auth_headers_for(expert_user)


@pytest.fixture
def headers_for():
    """Build auth headers for any user: headers_for(user)."""
    return auth_headers_for
