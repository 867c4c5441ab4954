# tests/conftest.py - Shared test fixtures
import os
import uuid
from datetime import datetime, timezone
from typing import List, Optional

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

# Use SQLite for tests
TEST_DB_URL = "sqlite+aiosqlite:///./test.db"
os.environ["DATABASE_URL"] = TEST_DB_URL
os.environ["JWT_SECRET_KEY"] = "test-secret-key-for-unit-tests-only-min-32-chars"
os.environ["ENVIRONMENT"] = "test"
os.environ["STRUCTURED_LOG_STDOUT"] = "false"

from models import (
    Base, User, Organisation, UserRole, Report, ReportSection, ReportStatus,
    Assessment, AssessmentType,
)
from auth import AuthService
from database import get_db_session
from main import app


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    engine = create_async_engine(TEST_DB_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(db_engine):
    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def client(db_engine):
    """HTTP test client with overridden DB dependency"""
    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


async def _make_org(db_session, name: str, slug: str) -> Organisation:
    org = Organisation(id=str(uuid.uuid4()), name=name, slug=slug, is_active=True)
    db_session.add(org)
    await db_session.commit()
    await db_session.refresh(org)
    return org


async def _make_user(db_session, org: Organisation, email: str, first: str, last: str, role: UserRole) -> User:
    user = User(
        id=str(uuid.uuid4()),
        email=email,
        first_name=first,
        last_name=last,
        organisation_id=org.id,
        role=role,
        is_active=True,
    )
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest_asyncio.fixture
async def test_org(db_session):
    """Create a test organisation"""
    return await _make_org(db_session, "Relief Coordination Unit", "relief-unit")


@pytest_asyncio.fixture
async def other_org(db_session):
    return await _make_org(db_session, "Other Agency", "other-agency")


@pytest_asyncio.fixture
async def test_user(db_session, test_org):
    """Create a manager (full report permissions)"""
    return await _make_user(db_session, test_org, "amina@relief.example", "Amina", "Okafor", UserRole.MANAGER)


@pytest_asyncio.fixture
async def second_user(db_session, test_org):
    return await _make_user(db_session, test_org, "jon@relief.example", "Jon", "Berg", UserRole.COORDINATOR)


@pytest_asyncio.fixture
async def viewer_user(db_session, test_org):
    return await _make_user(db_session, test_org, "viewer@relief.example", "Vera", "Lind", UserRole.VIEWER)


@pytest_asyncio.fixture
async def other_user(db_session, other_org):
    return await _make_user(db_session, other_org, "mallory@other.example", "Mallory", "Stone", UserRole.ORG_ADMIN)


async def create_report(
    db_session,
    author: User,
    title: str = "Flood Response Situation Report",
    sections: Optional[List[dict]] = None,
    assessments: Optional[List[dict]] = None,
    **fields,
) -> Report:
    """Insert a report plus sections; each section dict needs title, type, content, order"""
    report = Report(
        id=str(uuid.uuid4()),
        organisation_id=author.organisation_id,
        author_id=author.id,
        title=title,
        slug=fields.pop("slug", f"{title.lower().replace(' ', '-')}-1700000000000"),
        status=fields.pop("status", ReportStatus.DRAFT),
        **fields,
    )
    db_session.add(report)
    await db_session.flush()
    for section in sections or []:
        db_session.add(ReportSection(
            report_id=report.id,
            title=section["title"],
            type=section["type"],
            content=section.get("content", {}),
            order=section["order"],
            is_visible=section.get("is_visible", True),
        ))
    for row in assessments or []:
        db_session.add(Assessment(
            report_id=report.id,
            type=row.get("type", AssessmentType.RAPID),
            location=row["location"],
            affected_people=row.get("affected_people"),
            households=row.get("households"),
            start_date=row.get("start_date", datetime(2024, 3, 1, tzinfo=timezone.utc)),
            end_date=row.get("end_date", datetime(2024, 3, 5, tzinfo=timezone.utc)),
        ))
    await db_session.commit()
    await db_session.refresh(report)
    return report


def get_auth_headers(user: User) -> dict:
    """Generate auth headers for a user"""
    token_data = {
        "sub": user.id,
        "email": user.email,
        "organisation_id": user.organisation_id,
        "role": user.role.value if isinstance(user.role, UserRole) else user.role,
    }
    token = AuthService.create_access_token(token_data)
    return {"Authorization": f"Bearer {token}"}
