"""
Pytest Configuration and Shared Fixtures

Every test gets a fresh in-memory SQLite database and an in-memory cache.
Media storage and notifications are replaced with recording fakes.
"""

from datetime import timedelta
from typing import List, Optional

import pytest

from civicpulse.cache import CacheConfig, MemoryCache
from civicpulse.database import (
    Admin,
    AdminRole,
    PriorityTier,
    Report,
    SocialPost,
    User,
    configure_engine,
    create_db_engine,
    init_db,
    make_session_factory,
)
from civicpulse.integrations import MediaStorage, Notifier
from civicpulse.utils.clock import utcnow
from civicpulse.utils.config import Settings


# ============================================================================
# Fakes
# ============================================================================

class FakeStorage(MediaStorage):
    """Records uploads; can be told to fail."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.uploaded: List[str] = []
        self.deleted: List[str] = []

    async def upload(self, data, filename, content_type=None, folder="civicpulse") -> Optional[str]:
        if self.fail:
            return None
        url = f"https://media.test/{folder}/{filename}"
        self.uploaded.append(url)
        return url

    async def delete(self, url: str) -> bool:
        self.deleted.append(url)
        return True


class FakeNotifier(Notifier):
    def __init__(self):
        self.sent = []

    async def notify_resolved(self, user_id: str, report_id: str, title: str) -> None:
        self.sent.append((user_id, report_id, title))


# ============================================================================
# Infrastructure
# ============================================================================

@pytest.fixture
def engine():
    engine = create_db_engine("sqlite://")
    init_db(engine=engine)
    configure_engine(engine)
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


@pytest.fixture
def cache_config() -> CacheConfig:
    return CacheConfig(
        namespace="",
        enabled=True,
        backend="memory",
        compression_enabled=True,
        compression_threshold=1024,
        memory_max_entries=None,
    )


@pytest.fixture
def cache(cache_config) -> MemoryCache:
    return MemoryCache(cache_config)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        DATABASE_URL=None,
        ADMIN_CACHE_BYPASS_SECONDS=30,
        MAX_RESOLUTION_PHOTOS=2,
        PRIORITY_WINDOW_DAYS=30,
        PRIORITY_RADIUS_METERS=500.0,
    )


@pytest.fixture
def storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


# ============================================================================
# Seed helpers
# ============================================================================

def add_user(db, phone: str = "+910000000001", full_name: str = "Asha Rao", email: str = "asha@example.com") -> User:
    user = User(phone_number=phone, full_name=full_name, email=email, total_reports=0, resolved_reports=0)
    db.add(user)
    db.commit()
    return user


def add_admin(
    db,
    email: str = "admin@city.gov",
    role: AdminRole = AdminRole.ADMIN,
    department: Optional[str] = "Roads",
    full_name: str = "Field Admin",
    is_active: bool = True,
) -> Admin:
    admin = Admin(email=email, role=role, department=department, full_name=full_name, is_active=is_active)
    db.add(admin)
    db.commit()
    return admin


def add_report(
    db,
    user: User,
    title: str = "Pothole",
    latitude: Optional[float] = 12.9716,
    longitude: Optional[float] = 77.5946,
    category: str = "Roads & Infrastructure",
    priority: PriorityTier = PriorityTier.MEDIUM,
    department: str = "Roads",
    is_resolved: bool = False,
    age: timedelta = timedelta(0),
    with_post: bool = True,
) -> Report:
    created = utcnow() - age
    report = Report(
        user_id=user.id,
        title=title,
        description=f"{title} description",
        category=category,
        priority=priority,
        latitude=latitude,
        longitude=longitude,
        department=department,
        is_resolved=is_resolved,
        created_at=created,
        updated_at=created,
    )
    db.add(report)
    db.flush()
    if with_post:
        db.add(SocialPost(report_id=report.id, user_id=user.id, created_at=created))
    db.commit()
    return report


@pytest.fixture
def user(db) -> User:
    return add_user(db)


@pytest.fixture
def admin(db) -> Admin:
    return add_admin(db)
