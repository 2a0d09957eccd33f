"""
Portal Test Configuration

Shared fixtures for all tests: a fresh SQLite database per test, a test
configuration singleton and a few seeded users.
"""
from datetime import date
from typing import Optional

import pytest
import pytest_asyncio

from portal.config import AuthConfig, PortalConfig


# =============================================================================
# FIXTURES: Singletons
# =============================================================================

@pytest.fixture
def test_config(tmp_path) -> PortalConfig:
    """Configuration with every external channel unconfigured."""
    return PortalConfig(
        site_url="https://portal.test",
        auth=AuthConfig(jwt_secret="test-secret", cron_secret="cron-secret"),
        storage_dir=str(tmp_path / "prefs"),
    )


@pytest.fixture(autouse=True)
def _reset_singletons(test_config):
    """Reset DB, config and realtime singletons before each test."""
    import portal.chat.realtime as realtime_mod
    import portal.config as config_mod
    import portal.db.connection as conn_mod

    conn_mod._engine = None
    conn_mod._session_factory = None
    config_mod._config = test_config
    realtime_mod._hub = None
    yield
    config_mod._config = None
    realtime_mod._hub = None


@pytest_asyncio.fixture
async def fresh_db(tmp_path, monkeypatch):
    """Create a fresh SQLite database for each test."""
    db_path = tmp_path / "test.db"
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{db_path}")

    from portal.db.connection import close_db, init_db
    await init_db()
    yield db_path
    await close_db()


# =============================================================================
# FIXTURES: Sample Data
# =============================================================================

async def make_profile(
    session,
    email: str,
    first_name: str,
    last_name: str = "",
    phone: Optional[str] = None,
    prefs: Optional[dict] = None,
    role: str = "member",
):
    from portal.db.models import Profile

    profile = Profile(
        email=email,
        first_name=first_name,
        last_name=last_name,
        phone=phone,
        notification_preferences=prefs,
        role=role,
    )
    session.add(profile)
    await session.flush()
    return profile


async def make_project(
    session,
    owner_id: str,
    name: str,
    member_ids=(),
    admin_ids=(),
    **fields,
):
    from portal.db.models import MemberRole, Project, ProjectMember
    from portal.projects.service import slugify

    project = Project(name=name, slug=fields.pop("slug", slugify(name)), created_by=owner_id, **fields)
    session.add(project)
    await session.flush()
    session.add(ProjectMember(project_id=project.id, user_id=owner_id, role=MemberRole.OWNER.value))
    for uid in member_ids:
        session.add(ProjectMember(project_id=project.id, user_id=uid))
    for uid in admin_ids:
        session.add(ProjectMember(project_id=project.id, user_id=uid, role=MemberRole.ADMIN.value))
    await session.flush()
    return project


@pytest_asyncio.fixture
async def users(fresh_db) -> dict:
    """Three users: alice (admin), bob and carol. Returns ids by name."""
    from portal.db import get_session

    async with get_session() as session:
        alice = await make_profile(
            session, "alice@example.com", "Alice", "Anders", phone="0812-1111-2222", role="admin"
        )
        bob = await make_profile(session, "bob@example.com", "Bob", "Brown", phone="+62 813 3333 4444")
        carol = await make_profile(session, "carol@example.com", "Carol", "Cruz")
        ids = {"alice": alice.id, "bob": bob.id, "carol": carol.id}
    return ids


@pytest.fixture
def today() -> date:
    return date(2026, 3, 10)
