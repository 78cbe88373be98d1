"""
Request and result models for the section allocation engine.

Every engine operation returns one of these aggregates; per-row detail only
goes to the logs.
"""
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


class ResetPolicy(str, Enum):
    """What happens to enrollments that reference a section being reset."""
    DELETE = "delete"   # enrollment rows are removed with the section
    DETACH = "detach"   # enrollment rows stay, section reference is cleared


# =============================================================================
# Requests
# =============================================================================

class ProvisionRequest(BaseModel):
    course_id: int = Field(..., gt=0)
    target_capacity: Optional[int] = Field(None, gt=0)


class BucketRequest(BaseModel):
    """Bucket selector. Missing values are rejected by the engine, not here."""
    program_id: Optional[int] = None
    year_level: Optional[int] = None
    semester: Optional[int] = None
    target_capacity: Optional[int] = Field(None, gt=0)


class ResetFilter(BaseModel):
    """Any subset of (program, year level, semester). 0 or None means "all"."""
    program_id: Optional[int] = None
    year_level: Optional[int] = None
    semester: Optional[int] = None

    @field_validator("program_id", "year_level", "semester")
    @classmethod
    def zero_means_all(cls, value: Optional[int]) -> Optional[int]:
        if value is not None and value <= 0:
            return None
        return value


class ResetRequest(ResetFilter):
    policy: Optional[ResetPolicy] = None


class EnrollStudentRequest(BaseModel):
    student_id: int = Field(..., gt=0)
    semester: Optional[int] = None


class EnrollStudentsRequest(BaseModel):
    student_ids: List[int] = Field(default_factory=list)
    semester: Optional[int] = None


class BulkRunRequest(BaseModel):
    resume_run_id: Optional[int] = None
    target_capacity: Optional[int] = Field(None, gt=0)


class RebalanceRequest(BaseModel):
    school_year_id: Optional[int] = None
    target_capacity: Optional[int] = Field(None, gt=0)


# =============================================================================
# Results
# =============================================================================

class ProvisionResult(BaseModel):
    course_id: int
    sections_needed: int = 0
    existing: int = 0
    created: int = 0
    codes: List[str] = Field(default_factory=list)


class AllocationCounters(BaseModel):
    """
    Aggregate counters of a placement pass.

    Every (student, course) pair lands in exactly one of
    inserted / updated / skipped / unsectioned.
    """
    sections_created: int = 0
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    unsectioned: int = 0
    failed: int = 0
    courses_touched: int = 0
    buckets_touched: int = 0

    def merge(self, other: "AllocationCounters") -> "AllocationCounters":
        for name in AllocationCounters.model_fields:
            setattr(self, name, getattr(self, name) + getattr(other, name))
        return self

    @property
    def placed(self) -> int:
        return self.inserted + self.updated


class BulkRunResult(AllocationCounters):
    run_id: Optional[int] = None
    school_year_id: Optional[int] = None
    semester: Optional[int] = None
    programs_touched: int = 0


class RebalanceResult(BaseModel):
    scanned: int = 0
    touched: int = 0
    created: int = 0
    moved: int = 0
    failed: int = 0


class DedupeResult(BaseModel):
    groups: int = 0
    removed: int = 0
    reassigned: int = 0
    instructor_reassigned: int = 0
    failed: int = 0


class ResetResult(BaseModel):
    deleted: int = 0
    enrollments_deleted: int = 0
    enrollments_detached: int = 0
    instructor_assignments_deleted: int = 0


class RecountResult(BaseModel):
    scanned: int = 0
    corrected: int = 0


class SectionStatusEntry(BaseModel):
    section_id: int
    course_id: int
    section_code: str
    capacity: int
    enrolled_count: int
    occupancy: int
    status: str
    instructor_ids: List[int] = Field(default_factory=list)

    @property
    def over_capacity(self) -> bool:
        return self.occupancy > self.capacity
