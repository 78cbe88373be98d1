"""
Shared fixtures for the allocation engine tests.

Every test gets its own in-memory SQLite database (StaticPool keeps the
single connection alive so the schema survives across sessions).
"""
from typing import AsyncGenerator, List, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from registrar.config.settings import settings
from registrar.database import get_db
from registrar.orm import (
    Base, Course, Enrollment, EnrollmentStatus, InstructorSection, Program, SchoolYear,
    SchoolYearStatus, Section, SectionStatus, Student, StudentStatus,
)

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture
async def engine():
    """Create test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
        echo=False
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """Admin API client; each request gets a fresh session on the test database."""
    from registrar.main import app

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def capacity_settings(monkeypatch):
    """Pin the sizing settings so tests do not depend on the environment."""
    monkeypatch.setattr(settings, "SECTION_TARGET_CAPACITY", 30)
    monkeypatch.setattr(settings, "SECTION_FORCED_MIN_SECTIONS", 1)
    monkeypatch.setattr(settings, "SECTION_TOPUP_MIN_SECTIONS", 0)
    monkeypatch.setattr(settings, "ALLOCATION_BATCH_SIZE", 200)
    monkeypatch.setattr(settings, "ALLOCATION_YEAR_LEVELS", [1, 2, 3])
    monkeypatch.setattr(settings, "SECTION_RESET_POLICY", "delete")
    monkeypatch.setattr(settings, "FEATURE_SECTION_ADMIN_API", True)
    return settings


class Factory:
    """Creates catalog rows and returns their ids. Every call commits."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self._seq = 0

    def _next(self) -> int:
        self._seq += 1
        return self._seq

    async def _save(self, obj) -> int:
        self.db.add(obj)
        await self.db.commit()
        return obj.id

    async def program(self, code: Optional[str] = None) -> int:
        code = code or f"P{self._next()}"
        return await self._save(Program(code=code, name=f"Program {code}"))

    async def course(self, program_id: int, code: Optional[str] = None, year_level: int = 1, semester: int = 1) -> int:
        code = code or f"C{self._next():03d}"
        return await self._save(Course(
            program_id=program_id, course_code=code, course_name=f"Course {code}",
            year_level=year_level, semester=semester,
        ))

    async def students(
        self,
        program_id: int,
        year_level: int = 1,
        count: int = 1,
        status: StudentStatus = StudentStatus.ACTIVE,
    ) -> List[int]:
        ids = []
        for _ in range(count):
            n = self._next()
            student = Student(
                first_name=f"First{n}", last_name=f"Last{n}", email=f"student{n}@school.test",
                program_id=program_id, year_level=year_level, status=status,
            )
            self.db.add(student)
            await self.db.flush()
            ids.append(student.id)
        await self.db.commit()
        return ids

    async def school_year(
        self,
        semester: Optional[int] = 1,
        status: SchoolYearStatus = SchoolYearStatus.ACTIVE,
        year: Optional[str] = None,
    ) -> int:
        year = year or f"20{self._next():02d}-20{self._seq + 1:02d}"
        return await self._save(SchoolYear(year=year, semester=semester, status=status))

    async def section(
        self,
        course_id: int,
        code: str,
        capacity: int = 30,
        enrolled_count: int = 0,
        status: SectionStatus = SectionStatus.ACTIVE,
    ) -> int:
        return await self._save(Section(
            course_id=course_id, section_code=code, section_name=code,
            capacity=capacity, enrolled_count=enrolled_count, status=status,
        ))

    async def enrollment(
        self,
        student_id: int,
        course_id: int,
        school_year_id: int,
        section_id: Optional[int] = None,
    ) -> int:
        return await self._save(Enrollment(
            student_id=student_id, course_id=course_id, school_year_id=school_year_id,
            section_id=section_id, status=EnrollmentStatus.ENROLLED,
        ))

    async def instructor(self, section_id: int, instructor_id: int) -> int:
        return await self._save(InstructorSection(instructor_id=instructor_id, section_id=section_id))


@pytest_asyncio.fixture
async def factory(db_session, capacity_settings) -> Factory:
    return Factory(db_session)

