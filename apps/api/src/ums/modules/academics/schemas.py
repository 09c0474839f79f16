"""
Academics Schemas

Pydantic schemas for academic session and section administration.
"""

from datetime import date, datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def _normalize_section_name(value: str) -> str:
    name = value.strip().upper()
    if not name:
        raise ValueError("Section name is required.")
    return name


def _dedupe(ids: list[UUID]) -> list[UUID]:
    return list(dict.fromkeys(ids))


# ============================================
# Academic sessions
# ============================================


class AcademicSessionCreate(BaseModel):
    """Request body for POST /admin/academic-sessions."""

    year: str = Field(..., min_length=4, max_length=20, examples=["2025-2026"])
    semester: str = Field(..., min_length=1, max_length=20, examples=["Odd"])
    start_date: date
    end_date: date
    is_current: bool = False

    @model_validator(mode="after")
    def check_dates(self) -> "AcademicSessionCreate":
        if self.end_date < self.start_date:
            raise ValueError("End date must be on or after start date.")
        return self


class AcademicSessionItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    year: str
    semester: str
    start_date: date
    end_date: date
    is_current: bool


class AcademicSessionResponse(BaseModel):
    success: bool = True
    message: str
    data: AcademicSessionItem


class AcademicSessionListResponse(BaseModel):
    success: bool = True
    data: list[AcademicSessionItem]


# ============================================
# Sections
# ============================================


class SectionCreate(BaseModel):
    """Request body for POST /admin/sections."""

    name: str = Field(..., min_length=1, max_length=30)
    department: str = Field(..., min_length=1, max_length=120)
    year: int = Field(..., ge=1, le=10)
    semester: int = Field(..., ge=1, le=20)
    academic_session_id: UUID
    student_ids: list[UUID] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def normalize_name(cls, v: str) -> str:
        return _normalize_section_name(v)

    @field_validator("student_ids")
    @classmethod
    def dedupe_students(cls, v: list[UUID]) -> list[UUID]:
        return _dedupe(v)

    @field_validator("department")
    @classmethod
    def strip_department(cls, v: str) -> str:
        return v.strip()


class SectionUpdate(BaseModel):
    """Request body for PUT /admin/sections/{id}. Omitted fields are kept."""

    name: str | None = Field(None, min_length=1, max_length=30)
    department: str | None = Field(None, min_length=1, max_length=120)
    year: int | None = Field(None, ge=1, le=10)
    semester: int | None = Field(None, ge=1, le=20)
    academic_session_id: UUID | None = None
    student_ids: list[UUID] | None = None

    @field_validator("name")
    @classmethod
    def normalize_name(cls, v: str | None) -> str | None:
        return _normalize_section_name(v) if v is not None else None

    @field_validator("student_ids")
    @classmethod
    def dedupe_students(cls, v: list[UUID] | None) -> list[UUID] | None:
        return _dedupe(v) if v is not None else None


class SectionStudentsUpdate(BaseModel):
    """Request body for PATCH /admin/sections/{id}/students."""

    student_ids: list[UUID]

    @field_validator("student_ids")
    @classmethod
    def dedupe_students(cls, v: list[UUID]) -> list[UUID]:
        return _dedupe(v)


class SectionItem(BaseModel):
    id: UUID
    name: str
    department: str
    year: int
    semester: int
    academic_session_id: UUID
    academic_year: str | None = None
    is_active: bool
    student_ids: list[UUID]
    created_at: datetime | None = None


class SectionResponse(BaseModel):
    success: bool = True
    message: str
    data: SectionItem


class SectionListResponse(BaseModel):
    success: bool = True
    data: list[SectionItem]


class MessageResponse(BaseModel):
    success: bool = True
    message: str
