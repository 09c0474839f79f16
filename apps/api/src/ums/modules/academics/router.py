"""
Academics Admin Router

API endpoints for administrators to manage academic sessions, sections and
student records. All endpoints require an admin access token.

Endpoints:
- GET /admin/academic-sessions - List academic sessions
- POST /admin/academic-sessions - Create an academic session
- GET /admin/sections - List sections, optionally by academic session
- POST /admin/sections - Create a section with its students
- PUT /admin/sections/{id} - Update a section
- PATCH /admin/sections/{id}/students - Replace a section's students
- DELETE /admin/sections/{id} - Delete a section
- DELETE /admin/students/{id} - Delete a student and their records

Section writes also update the students' profiles and active enrollments
(see ``SectionRosterSynchronizer``).
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ums.core.auth import require_roles
from ums.core.database import get_db
from ums.modules.academics import service
from ums.modules.academics.schemas import (
    AcademicSessionCreate,
    AcademicSessionItem,
    AcademicSessionListResponse,
    AcademicSessionResponse,
    MessageResponse,
    SectionCreate,
    SectionListResponse,
    SectionResponse,
    SectionStudentsUpdate,
    SectionUpdate,
)
from ums.modules.challenges import ChallengeStore, get_challenge_store
from ums.modules.users import User, UserRole

logger = logging.getLogger(__name__)

# One callable so FastAPI resolves it once per request
require_admin = require_roles(UserRole.ADMIN)
AdminUser = Depends(require_admin)

router = APIRouter(dependencies=[AdminUser])


# ============================================
# Academic sessions
# ============================================


@router.get(
    "/academic-sessions",
    response_model=AcademicSessionListResponse,
    summary="List Academic Sessions",
)
async def list_academic_sessions(
    db: AsyncSession = Depends(get_db),
) -> AcademicSessionListResponse:
    sessions = await service.list_academic_sessions(db)
    return AcademicSessionListResponse(
        data=[AcademicSessionItem.model_validate(s) for s in sessions]
    )


@router.post(
    "/academic-sessions",
    response_model=AcademicSessionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create Academic Session",
    description="Create an academic session. Marking it current clears the flag on all others.",
)
async def create_academic_session(
    data: AcademicSessionCreate,
    admin: User = AdminUser,
    db: AsyncSession = Depends(get_db),
) -> AcademicSessionResponse:
    session = await service.create_academic_session(db, data)
    logger.info(f"Admin {admin.id} created academic session {session.id}")
    return AcademicSessionResponse(
        message="Academic session created successfully.",
        data=AcademicSessionItem.model_validate(session),
    )


# ============================================
# Sections
# ============================================


@router.get(
    "/sections",
    response_model=SectionListResponse,
    summary="List Sections",
)
async def list_sections(
    academic_session_id: UUID | None = Query(None, description="Filter by academic session"),
    db: AsyncSession = Depends(get_db),
) -> SectionListResponse:
    return SectionListResponse(data=await service.list_sections(db, academic_session_id))


@router.post(
    "/sections",
    response_model=SectionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create Section",
    description="""
Create a section and assign its students.

Students are removed from any other section of the same academic session,
and their profiles and active enrollments are moved to this section.

**Errors:**
- 400: A student id is not a student account
- 404: Academic session not found
- 409: Section already exists for this academic session
""",
)
async def create_section(
    data: SectionCreate,
    admin: User = AdminUser,
    db: AsyncSession = Depends(get_db),
) -> SectionResponse:
    item = await service.create_section(db, data)
    logger.info(f"Admin {admin.id} created section {item.id}")
    return SectionResponse(message="Section created successfully.", data=item)


@router.put(
    "/sections/{section_id}",
    response_model=SectionResponse,
    summary="Update Section",
)
async def update_section(
    section_id: UUID,
    data: SectionUpdate,
    admin: User = AdminUser,
    db: AsyncSession = Depends(get_db),
) -> SectionResponse:
    item = await service.update_section(db, section_id, data)
    logger.info(f"Admin {admin.id} updated section {section_id}")
    return SectionResponse(message="Section updated successfully.", data=item)


@router.patch(
    "/sections/{section_id}/students",
    response_model=SectionResponse,
    summary="Assign Students to Section",
)
async def assign_students(
    section_id: UUID,
    data: SectionStudentsUpdate,
    admin: User = AdminUser,
    db: AsyncSession = Depends(get_db),
) -> SectionResponse:
    item = await service.assign_students(db, section_id, data.student_ids)
    logger.info(f"Admin {admin.id} assigned {len(data.student_ids)} students to {section_id}")
    return SectionResponse(message="Students assigned to section successfully.", data=item)


@router.delete(
    "/sections/{section_id}",
    response_model=MessageResponse,
    summary="Delete Section",
)
async def delete_section(
    section_id: UUID,
    admin: User = AdminUser,
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    await service.delete_section(db, section_id)
    logger.info(f"Admin {admin.id} deleted section {section_id}")
    return MessageResponse(message="Section deleted successfully.")


# ============================================
# Students
# ============================================


@router.delete(
    "/students/{student_id}",
    response_model=MessageResponse,
    summary="Delete Student",
    description="Delete a student with their profile, enrollments, memberships and pending codes.",
)
async def delete_student(
    student_id: UUID,
    admin: User = AdminUser,
    db: AsyncSession = Depends(get_db),
    store: ChallengeStore = Depends(get_challenge_store),
) -> MessageResponse:
    await service.delete_student(db, store, student_id)
    logger.info(f"Admin {admin.id} deleted student {student_id}")
    return MessageResponse(message="Student deleted successfully.")
