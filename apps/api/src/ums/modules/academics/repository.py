"""
Academics Repository

Database operations for academic sessions, sections, student profiles and
enrollments. Roster fan-out helpers are set-based: each is a single
UPDATE or DELETE over ``id IN (...)``, never a per-row loop.

Functions flush but do not commit; the service owns the transaction.
"""

from collections import defaultdict
from collections.abc import Iterable
from datetime import date
from uuid import UUID

from sqlalchemy import delete, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    DEFAULT_SECTION,
    AcademicSession,
    Enrollment,
    EnrollmentStatus,
    Section,
    StudentProfile,
    section_students,
)

# ============================================
# Academic sessions
# ============================================


async def get_session(db: AsyncSession, session_id: UUID) -> AcademicSession | None:
    return await db.get(AcademicSession, session_id)


async def list_sessions(db: AsyncSession) -> list[AcademicSession]:
    result = await db.execute(select(AcademicSession).order_by(AcademicSession.start_date.desc()))
    return list(result.scalars().all())


async def get_session_years(db: AsyncSession, session_ids: Iterable[UUID]) -> dict[UUID, str]:
    ids = list(set(session_ids))
    if not ids:
        return {}
    result = await db.execute(
        select(AcademicSession.id, AcademicSession.year).where(AcademicSession.id.in_(ids))
    )
    return dict(result.tuples().all())


async def create_session(
    db: AsyncSession,
    *,
    year: str,
    semester: str,
    start_date: date,
    end_date: date,
    is_current: bool,
) -> AcademicSession:
    """Create a session; a new current session clears the flag everywhere else."""
    if is_current:
        await db.execute(update(AcademicSession).values(is_current=False))

    session = AcademicSession(
        year=year,
        semester=semester,
        start_date=start_date,
        end_date=end_date,
        is_current=is_current,
    )
    db.add(session)
    await db.flush()
    return session


# ============================================
# Sections
# ============================================


async def get_section(db: AsyncSession, section_id: UUID) -> Section | None:
    return await db.get(Section, section_id)


async def list_sections(db: AsyncSession, academic_session_id: UUID | None = None) -> list[Section]:
    query = select(Section).order_by(Section.created_at.desc())
    if academic_session_id is not None:
        query = query.where(Section.academic_session_id == academic_session_id)
    result = await db.execute(query)
    return list(result.scalars().all())


async def find_duplicate_section(
    db: AsyncSession,
    *,
    name: str,
    department: str,
    year: int,
    semester: int,
    academic_session_id: UUID,
    exclude_id: UUID | None = None,
) -> Section | None:
    query = select(Section).where(
        Section.name == name,
        Section.department == department,
        Section.year == year,
        Section.semester == semester,
        Section.academic_session_id == academic_session_id,
    )
    if exclude_id is not None:
        query = query.where(Section.id != exclude_id)
    result = await db.execute(query)
    return result.scalars().first()


async def create_section(
    db: AsyncSession,
    *,
    name: str,
    department: str,
    year: int,
    semester: int,
    academic_session_id: UUID,
) -> Section:
    section = Section(
        name=name,
        department=department,
        year=year,
        semester=semester,
        academic_session_id=academic_session_id,
    )
    db.add(section)
    await db.flush()
    return section


async def delete_section(db: AsyncSession, section: Section) -> None:
    await db.execute(delete(section_students).where(section_students.c.section_id == section.id))
    await db.delete(section)
    await db.flush()


async def get_section_student_ids(db: AsyncSession, section_id: UUID) -> list[UUID]:
    result = await db.execute(
        select(section_students.c.student_id).where(section_students.c.section_id == section_id)
    )
    return list(result.scalars().all())


async def get_student_ids_by_section(
    db: AsyncSession, section_ids: Iterable[UUID]
) -> dict[UUID, list[UUID]]:
    """Batch-load memberships for a page of sections."""
    ids = list(section_ids)
    members: dict[UUID, list[UUID]] = defaultdict(list)
    if not ids:
        return members
    result = await db.execute(
        select(section_students.c.section_id, section_students.c.student_id).where(
            section_students.c.section_id.in_(ids)
        )
    )
    for section_id, student_id in result.all():
        members[section_id].append(student_id)
    return members


async def replace_section_students(
    db: AsyncSession, section_id: UUID, student_ids: Iterable[UUID]
) -> None:
    """Make ``student_ids`` the exact membership of a section."""
    await db.execute(delete(section_students).where(section_students.c.section_id == section_id))
    rows = [{"section_id": section_id, "student_id": sid} for sid in student_ids]
    if rows:
        await db.execute(insert(section_students), rows)
    await db.flush()


async def remove_students_from_other_sections(
    db: AsyncSession,
    *,
    academic_session_id: UUID,
    keep_section_id: UUID,
    student_ids: list[UUID],
) -> int:
    """Pull ``student_ids`` out of every other section in the same session."""
    if not student_ids:
        return 0
    other_sections = select(Section.id).where(
        Section.academic_session_id == academic_session_id,
        Section.id != keep_section_id,
    )
    result = await db.execute(
        delete(section_students).where(
            section_students.c.student_id.in_(student_ids),
            section_students.c.section_id.in_(other_sections),
        )
    )
    return result.rowcount or 0


async def remove_student_from_all_sections(db: AsyncSession, student_id: UUID) -> None:
    await db.execute(delete(section_students).where(section_students.c.student_id == student_id))


# ============================================
# Student profiles & enrollments (roster caches)
# ============================================


async def get_student_profile(db: AsyncSession, user_id: UUID) -> StudentProfile | None:
    result = await db.execute(select(StudentProfile).where(StudentProfile.user_id == user_id))
    return result.scalar_one_or_none()


async def set_profile_placement(
    db: AsyncSession,
    student_ids: list[UUID],
    *,
    section: str,
    department: str,
    year: int,
    semester: int,
) -> int:
    if not student_ids:
        return 0
    result = await db.execute(
        update(StudentProfile)
        .where(StudentProfile.user_id.in_(student_ids))
        .values(section=section, department=department, year=year, semester=semester)
    )
    return result.rowcount or 0


async def set_active_enrollment_section(
    db: AsyncSession,
    student_ids: list[UUID],
    *,
    section: str,
    semester: int,
    academic_year: str | None,
) -> int:
    """Point matching active enrollments at ``section``.

    ``academic_year`` of None means the session year is unknown and the
    enrollment year is not filtered.
    """
    if not student_ids:
        return 0
    query = update(Enrollment).where(
        Enrollment.student_id.in_(student_ids),
        Enrollment.status == EnrollmentStatus.ACTIVE,
        Enrollment.semester == semester,
    )
    if academic_year:
        query = query.where(Enrollment.academic_year == academic_year)
    result = await db.execute(query.values(section=section))
    return result.rowcount or 0


async def reset_profile_sections(
    db: AsyncSession, student_ids: list[UUID], *, section: str, semester: int
) -> int:
    if not student_ids:
        return 0
    result = await db.execute(
        update(StudentProfile)
        .where(
            StudentProfile.user_id.in_(student_ids),
            StudentProfile.section == section,
            StudentProfile.semester == semester,
        )
        .values(section=DEFAULT_SECTION)
    )
    return result.rowcount or 0


async def reset_enrollment_sections(
    db: AsyncSession,
    student_ids: list[UUID],
    *,
    section: str,
    semester: int,
    academic_year: str | None,
) -> int:
    if not student_ids:
        return 0
    query = update(Enrollment).where(
        Enrollment.student_id.in_(student_ids),
        Enrollment.status == EnrollmentStatus.ACTIVE,
        Enrollment.section == section,
        Enrollment.semester == semester,
    )
    if academic_year:
        query = query.where(Enrollment.academic_year == academic_year)
    result = await db.execute(query.values(section=DEFAULT_SECTION))
    return result.rowcount or 0


async def delete_student_records(db: AsyncSession, student_id: UUID) -> None:
    """Remove a student's profile, enrollments and section memberships."""
    await remove_student_from_all_sections(db, student_id)
    await db.execute(delete(Enrollment).where(Enrollment.student_id == student_id))
    await db.execute(delete(StudentProfile).where(StudentProfile.user_id == student_id))
