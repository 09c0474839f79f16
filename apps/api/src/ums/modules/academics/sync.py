"""
Section Roster Synchronizer

Propagates a section's membership into the denormalized copies held on
student profiles and active enrollments, and enforces that a student sits
in at most one section per academic session.

Every step is a single set-based statement so the cost does not grow with
one round-trip per student. The steps are not wrapped in a multi-table
transaction; callers commit the section write first and then commit the
fan-out, so a failed fan-out leaves the authoritative membership intact.
"""

import logging
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from ums.modules.academics import repository
from ums.modules.academics.models import Section

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SyncReport:
    """Row counts touched by one synchronizer pass."""

    memberships_removed: int = 0
    profiles_updated: int = 0
    enrollments_updated: int = 0


class SectionRosterSynchronizer:
    """Keeps roster caches in line with section membership."""

    async def apply(
        self,
        db: AsyncSession,
        section: Section,
        student_ids: list[UUID],
        session_year: str | None,
    ) -> SyncReport:
        """
        Propagate ``section`` to its members.

        Safe to repeat: a second pass with the same arguments changes nothing.

        Args:
            db: Database session (not committed here)
            section: Section whose membership was just written
            student_ids: The section's members
            session_year: Year of the section's academic session, or None
                when unknown (enrollments are then not filtered by year)
        """
        if not student_ids:
            return SyncReport()

        removed = await repository.remove_students_from_other_sections(
            db,
            academic_session_id=section.academic_session_id,
            keep_section_id=section.id,
            student_ids=student_ids,
        )
        profiles = await repository.set_profile_placement(
            db,
            student_ids,
            section=section.name,
            department=section.department,
            year=section.year,
            semester=section.semester,
        )
        enrollments = await repository.set_active_enrollment_section(
            db,
            student_ids,
            section=section.name,
            semester=section.semester,
            academic_year=session_year,
        )

        report = SyncReport(
            memberships_removed=removed,
            profiles_updated=profiles,
            enrollments_updated=enrollments,
        )
        logger.info(
            f"Section {section.id} ({section.name}) synced for {len(student_ids)} students: "
            f"{removed} memberships moved, {profiles} profiles, {enrollments} enrollments"
        )
        return report

    async def release(
        self,
        db: AsyncSession,
        *,
        section_name: str,
        semester: int,
        former_ids: list[UUID],
        session_year: str | None,
    ) -> SyncReport:
        """
        Reset former members of a deleted section to the default section.

        Only rows that still point at the deleted section are touched, so a
        student who has since moved elsewhere keeps their new placement.
        """
        if not former_ids:
            return SyncReport()

        profiles = await repository.reset_profile_sections(
            db, former_ids, section=section_name, semester=semester
        )
        enrollments = await repository.reset_enrollment_sections(
            db,
            former_ids,
            section=section_name,
            semester=semester,
            academic_year=session_year,
        )

        logger.info(
            f"Section {section_name} released {len(former_ids)} students: "
            f"{profiles} profiles, {enrollments} enrollments reset"
        )
        return SyncReport(profiles_updated=profiles, enrollments_updated=enrollments)
