"""
Fixtures for academics tests.

Builders insert rows directly so synchronizer tests can arrange any roster
state before a pass.
"""

from datetime import date
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession

from ums.modules.academics import repository
from ums.modules.academics.models import (
    AcademicSession,
    Enrollment,
    EnrollmentStatus,
    Section,
    StudentProfile,
)
from ums.modules.users import User, UserRepository, UserRole


async def _make_student(
    db: AsyncSession,
    slug: str,
    *,
    section: str = "A",
    semester: int = 3,
    department: str = "Physics",
    year: int = 1,
) -> User:
    """Create a student account with a profile."""
    user = await UserRepository.create(
        db,
        name=slug.title(),
        email=f"{slug}@uni.edu",
        password="secret123",
        role=UserRole.STUDENT,
        username=slug,
    )
    db.add(
        StudentProfile(
            user_id=user.id,
            roll_number=f"R-{slug}",
            department=department,
            year=year,
            semester=semester,
            section=section,
        )
    )
    await db.flush()
    return user


async def _make_enrollment(
    db: AsyncSession,
    student_id: UUID,
    *,
    semester: int = 3,
    academic_year: str = "2025-2026",
    section: str = "A",
    status: EnrollmentStatus = EnrollmentStatus.ACTIVE,
) -> Enrollment:
    enrollment = Enrollment(
        student_id=student_id,
        course_id=uuid4(),
        section=section,
        semester=semester,
        academic_year=academic_year,
        status=status,
    )
    db.add(enrollment)
    await db.flush()
    return enrollment


async def _make_section(
    db: AsyncSession,
    academic_session: AcademicSession,
    name: str,
    student_ids: list[UUID] | None = None,
    *,
    department: str = "Computer Science",
    year: int = 2,
    semester: int = 3,
) -> Section:
    section = await repository.create_section(
        db,
        name=name,
        department=department,
        year=year,
        semester=semester,
        academic_session_id=academic_session.id,
    )
    await repository.replace_section_students(db, section.id, student_ids or [])
    await db.commit()
    await db.refresh(section)
    return section


@pytest_asyncio.fixture
async def academic_session(db_session: AsyncSession) -> AcademicSession:
    session = await repository.create_session(
        db_session,
        year="2025-2026",
        semester="Odd",
        start_date=date(2025, 7, 1),
        end_date=date(2025, 12, 20),
        is_current=True,
    )
    await db_session.commit()
    return session


@pytest_asyncio.fixture
async def other_session(db_session: AsyncSession) -> AcademicSession:
    session = await repository.create_session(
        db_session,
        year="2026-2027",
        semester="Odd",
        start_date=date(2026, 7, 1),
        end_date=date(2026, 12, 20),
        is_current=False,
    )
    await db_session.commit()
    return session


@pytest.fixture
def student_factory(db_session: AsyncSession):
    """Create a student with a profile: ``await student_factory("ravi", section="B")``."""

    async def factory(slug: str, **kwargs) -> User:
        return await _make_student(db_session, slug, **kwargs)

    return factory


@pytest.fixture
def enrollment_factory(db_session: AsyncSession):
    async def factory(student_id: UUID, **kwargs) -> Enrollment:
        return await _make_enrollment(db_session, student_id, **kwargs)

    return factory


@pytest.fixture
def section_factory(db_session: AsyncSession):
    async def factory(
        academic_session: AcademicSession,
        name: str,
        student_ids: list[UUID] | None = None,
        **kwargs,
    ) -> Section:
        return await _make_section(db_session, academic_session, name, student_ids, **kwargs)

    return factory
