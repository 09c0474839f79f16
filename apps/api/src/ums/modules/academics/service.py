"""
Academics Service Layer

Business logic for academic session and section administration.

Section writes follow a two-step commit:
1. The section row and its membership are committed (authoritative data)
2. ``SectionRosterSynchronizer`` fans the membership out to student
   profiles and enrollments and commits separately

A failure in step 2 is logged and rolled back; the section operation still
succeeds and the caches are corrected by the next write to the section.
"""

import logging
from uuid import UUID

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ums.core.exceptions import ConflictError, NotFoundError, ServiceError
from ums.modules.academics import repository
from ums.modules.academics.models import AcademicSession, Section
from ums.modules.academics.schemas import (
    AcademicSessionCreate,
    SectionCreate,
    SectionItem,
    SectionUpdate,
)
from ums.modules.academics.sync import SectionRosterSynchronizer
from ums.modules.challenges import ChallengeStore
from ums.modules.users import UserRepository, UserRole

logger = logging.getLogger(__name__)

synchronizer = SectionRosterSynchronizer()


class AcademicSessionNotFoundError(NotFoundError):
    def __init__(self):
        super().__init__("Academic session not found.", error_code="ACADEMIC_SESSION_NOT_FOUND")


class SectionNotFoundError(NotFoundError):
    def __init__(self):
        super().__init__("Section not found.", error_code="SECTION_NOT_FOUND")


class StudentNotFoundError(NotFoundError):
    def __init__(self):
        super().__init__("Student not found.", error_code="STUDENT_NOT_FOUND")


class DuplicateSectionError(ConflictError):
    def __init__(self):
        super().__init__(
            "Section already exists for this academic session.",
            error_code="DUPLICATE_SECTION",
        )


class InvalidStudentsError(ServiceError):
    def __init__(self):
        super().__init__(
            message="One or more student ids are invalid.",
            error_code="INVALID_STUDENTS",
            status_code=400,
        )


# ============================================
# Helpers
# ============================================


async def _require_session(db: AsyncSession, session_id: UUID) -> AcademicSession:
    session = await repository.get_session(db, session_id)
    if session is None:
        raise AcademicSessionNotFoundError()
    return session


async def _require_section(db: AsyncSession, section_id: UUID) -> Section:
    section = await repository.get_section(db, section_id)
    if section is None:
        raise SectionNotFoundError()
    return section


async def _validate_students(db: AsyncSession, student_ids: list[UUID]) -> None:
    """Every id must reference a user whose role is student."""
    if not student_ids:
        return
    students = await UserRepository.get_students(db, student_ids)
    if len(students) != len(student_ids):
        raise InvalidStudentsError()


def _section_to_item(
    section: Section, student_ids: list[UUID], academic_year: str | None
) -> SectionItem:
    return SectionItem(
        id=section.id,
        name=section.name,
        department=section.department,
        year=section.year,
        semester=section.semester,
        academic_session_id=section.academic_session_id,
        academic_year=academic_year,
        is_active=section.is_active,
        student_ids=student_ids,
        created_at=section.created_at,
    )


async def _sync_roster(
    db: AsyncSession,
    section: Section,
    student_ids: list[UUID],
    session_year: str | None,
) -> None:
    try:
        await synchronizer.apply(db, section, student_ids, session_year)
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(f"Roster sync failed for section {section.id}: {e}", exc_info=True)


# ============================================
# Academic sessions
# ============================================


async def list_academic_sessions(db: AsyncSession) -> list[AcademicSession]:
    return await repository.list_sessions(db)


async def create_academic_session(
    db: AsyncSession, data: AcademicSessionCreate
) -> AcademicSession:
    session = await repository.create_session(
        db,
        year=data.year.strip(),
        semester=data.semester.strip(),
        start_date=data.start_date,
        end_date=data.end_date,
        is_current=data.is_current,
    )
    await db.commit()
    logger.info(f"Academic session created: {session.id} ({session.year} {session.semester})")
    return session


# ============================================
# Sections
# ============================================


async def list_sections(
    db: AsyncSession, academic_session_id: UUID | None = None
) -> list[SectionItem]:
    sections = await repository.list_sections(db, academic_session_id)
    members = await repository.get_student_ids_by_section(db, [s.id for s in sections])
    years = await repository.get_session_years(db, [s.academic_session_id for s in sections])
    return [
        _section_to_item(s, members.get(s.id, []), years.get(s.academic_session_id))
        for s in sections
    ]


async def create_section(db: AsyncSession, data: SectionCreate) -> SectionItem:
    """
    Create a section and place its students.

    Raises:
        AcademicSessionNotFoundError: Unknown academic session
        InvalidStudentsError: A listed id is not a student
        DuplicateSectionError: Same name/department/year/semester/session exists
    """
    academic_session = await _require_session(db, data.academic_session_id)
    await _validate_students(db, data.student_ids)

    duplicate = await repository.find_duplicate_section(
        db,
        name=data.name,
        department=data.department,
        year=data.year,
        semester=data.semester,
        academic_session_id=data.academic_session_id,
    )
    if duplicate is not None:
        raise DuplicateSectionError()

    try:
        section = await repository.create_section(
            db,
            name=data.name,
            department=data.department,
            year=data.year,
            semester=data.semester,
            academic_session_id=data.academic_session_id,
        )
        await repository.replace_section_students(db, section.id, data.student_ids)
        await db.commit()
    except IntegrityError as e:
        # Scope claimed by another request after the duplicate check
        await db.rollback()
        raise DuplicateSectionError() from e
    await db.refresh(section)
    logger.info(f"Section created: {section.id} ({section.name}, {len(data.student_ids)} students)")

    item = _section_to_item(section, data.student_ids, academic_session.year)
    await _sync_roster(db, section, data.student_ids, academic_session.year)
    return item


async def update_section(db: AsyncSession, section_id: UUID, data: SectionUpdate) -> SectionItem:
    """
    Update a section's details and, when given, its membership.

    Members are re-synced under the section's new name and scope. Students
    dropped from the list keep their cached placement until they are
    assigned elsewhere.
    """
    section = await _require_section(db, section_id)

    next_session_id = data.academic_session_id or section.academic_session_id
    academic_session = await _require_session(db, next_session_id)

    if data.student_ids is not None:
        await _validate_students(db, data.student_ids)
        student_ids = data.student_ids
    else:
        student_ids = await repository.get_section_student_ids(db, section.id)

    next_name = data.name if data.name is not None else section.name
    next_department = data.department if data.department is not None else section.department
    next_year = data.year if data.year is not None else section.year
    next_semester = data.semester if data.semester is not None else section.semester

    duplicate = await repository.find_duplicate_section(
        db,
        name=next_name,
        department=next_department,
        year=next_year,
        semester=next_semester,
        academic_session_id=next_session_id,
        exclude_id=section.id,
    )
    if duplicate is not None:
        raise DuplicateSectionError()

    try:
        section.name = next_name
        section.department = next_department
        section.year = next_year
        section.semester = next_semester
        section.academic_session_id = next_session_id
        if data.student_ids is not None:
            await repository.replace_section_students(db, section.id, student_ids)
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        raise DuplicateSectionError() from e
    await db.refresh(section)
    logger.info(f"Section updated: {section.id}")

    item = _section_to_item(section, student_ids, academic_session.year)
    await _sync_roster(db, section, student_ids, academic_session.year)
    return item


async def assign_students(
    db: AsyncSession, section_id: UUID, student_ids: list[UUID]
) -> SectionItem:
    """Replace a section's membership."""
    section = await _require_section(db, section_id)
    await _validate_students(db, student_ids)
    academic_session = await repository.get_session(db, section.academic_session_id)
    session_year = academic_session.year if academic_session else None

    await repository.replace_section_students(db, section.id, student_ids)
    await db.commit()
    logger.info(f"Section {section.id} membership set to {len(student_ids)} students")

    item = _section_to_item(section, student_ids, session_year)
    await _sync_roster(db, section, student_ids, session_year)
    return item


async def delete_section(db: AsyncSession, section_id: UUID) -> None:
    """Delete a section and reset its former members to the default section."""
    section = await _require_section(db, section_id)
    former_ids = await repository.get_section_student_ids(db, section.id)
    academic_session = await repository.get_session(db, section.academic_session_id)
    session_year = academic_session.year if academic_session else None
    section_name, semester = section.name, section.semester

    await repository.delete_section(db, section)
    await db.commit()
    logger.info(f"Section deleted: {section_id} ({len(former_ids)} former members)")

    try:
        await synchronizer.release(
            db,
            section_name=section_name,
            semester=semester,
            former_ids=former_ids,
            session_year=session_year,
        )
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(f"Roster release failed for section {section_id}: {e}", exc_info=True)


# ============================================
# Students
# ============================================


async def delete_student(db: AsyncSession, store: ChallengeStore, student_id: UUID) -> None:
    """
    Delete a student account with its academic records.

    Outstanding one-time codes for the account (keyed by id or email) are
    cancelled after the delete commits.
    """
    user = await UserRepository.get_by_id(db, student_id)
    if user is None or user.role != UserRole.STUDENT:
        raise StudentNotFoundError()

    subject_keys = [str(user.id), user.email]
    await repository.delete_student_records(db, user.id)
    await db.delete(user)
    await db.commit()

    await store.cancel_all(subject_keys)
    logger.info(f"Student deleted: {student_id}")
