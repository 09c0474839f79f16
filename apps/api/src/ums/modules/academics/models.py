"""
Academics Models

Academic sessions, sections, student profiles and course enrollments.

Section is the authoritative record of which section a student sits in.
StudentProfile.section/department/year/semester and Enrollment.section are
cached copies maintained by ``SectionRosterSynchronizer``.
"""

import enum
import uuid
from datetime import date

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    Enum,
    ForeignKey,
    Integer,
    String,
    Table,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from ums.core.database import Base
from ums.modules.shared import BaseModel

DEFAULT_SECTION = "A"


class EnrollmentStatus(str, enum.Enum):
    """Lifecycle of a course enrollment."""

    ACTIVE = "active"
    DROPPED = "dropped"
    COMPLETED = "completed"


# Section membership. A student may appear in several rows overall but in at
# most one section per academic session (maintained by the synchronizer).
section_students = Table(
    "section_students",
    Base.metadata,
    Column(
        "section_id",
        Uuid,
        ForeignKey("sections.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column(
        "student_id",
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
        index=True,
    ),
)


class AcademicSession(BaseModel):
    """An academic year/semester scope, e.g. 2025-2026 / Odd."""

    __tablename__ = "academic_sessions"

    year: Mapped[str] = mapped_column(String(20), nullable=False)
    semester: Mapped[str] = mapped_column(String(20), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    is_current: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    def __repr__(self) -> str:
        return f"<AcademicSession(id={self.id}, year={self.year}, semester={self.semester})>"


class Section(BaseModel):
    """A named class group within a department, study year and session."""

    __tablename__ = "sections"
    __table_args__ = (
        UniqueConstraint(
            "name",
            "department",
            "year",
            "semester",
            "academic_session_id",
            name="uq_sections_scope",
        ),
    )

    name: Mapped[str] = mapped_column(String(30), nullable=False)
    department: Mapped[str] = mapped_column(String(120), nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    semester: Mapped[int] = mapped_column(Integer, nullable=False)
    academic_session_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("academic_sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<Section(id={self.id}, name={self.name}, semester={self.semester})>"


class StudentProfile(BaseModel):
    """Academic profile attached to a student user."""

    __tablename__ = "student_profiles"

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    roll_number: Mapped[str] = mapped_column(String(40), unique=True, nullable=False)
    department: Mapped[str] = mapped_column(String(120), nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    semester: Mapped[int] = mapped_column(Integer, nullable=False)
    section: Mapped[str] = mapped_column(String(30), default=DEFAULT_SECTION, nullable=False)
    phone: Mapped[str] = mapped_column(String(20), default="", nullable=False)
    address: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    guardian_name: Mapped[str] = mapped_column(String(120), default="", nullable=False)


class Enrollment(BaseModel):
    """A student's registration in a course for a semester and academic year."""

    __tablename__ = "enrollments"
    __table_args__ = (
        UniqueConstraint(
            "student_id",
            "course_id",
            "semester",
            "academic_year",
            name="uq_enrollments_student_course_term",
        ),
    )

    student_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    course_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    section: Mapped[str] = mapped_column(String(30), default=DEFAULT_SECTION, nullable=False)
    semester: Mapped[int] = mapped_column(Integer, nullable=False)
    academic_year: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[EnrollmentStatus] = mapped_column(
        Enum(
            EnrollmentStatus,
            name="enrollment_status",
            values_callable=lambda e: [m.value for m in e],
        ),
        default=EnrollmentStatus.ACTIVE,
        nullable=False,
    )
