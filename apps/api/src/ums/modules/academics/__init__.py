"""
Academics Module

Academic sessions, sections, student profiles and enrollments.

Components:
- Admin router: session and section administration, student deletion
- SectionRosterSynchronizer: keeps profile and enrollment section copies in
  line with section membership
"""

from ums.modules.academics.models import (
    DEFAULT_SECTION,
    AcademicSession,
    Enrollment,
    EnrollmentStatus,
    Section,
    StudentProfile,
    section_students,
)
from ums.modules.academics.sync import SectionRosterSynchronizer, SyncReport

__all__ = [
    "DEFAULT_SECTION",
    "AcademicSession",
    "Enrollment",
    "EnrollmentStatus",
    "Section",
    "SectionRosterSynchronizer",
    "StudentProfile",
    "SyncReport",
    "section_students",
]
