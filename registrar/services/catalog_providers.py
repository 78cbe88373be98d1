"""
Read-side queries the allocation engine needs from the rest of the portal.

Roster, catalog and school-year lookups are kept here so the engine depends
on one fixed data-access surface instead of probing tables at call time.
"""
import logging
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from registrar.exceptions import AllocationInputError
from registrar.orm.course import Course
from registrar.orm.program import Program
from registrar.orm.school_year import SchoolYear, SchoolYearStatus
from registrar.orm.student import Student, StudentStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActiveSchoolYear:
    id: int
    semester: Optional[int]


async def get_active_school_year(db: AsyncSession, require_semester: bool = False) -> ActiveSchoolYear:
    """
    The active school year (newest one wins if several are flagged active).

    Raises:
        AllocationInputError: No active school year, or no semester configured
            on it while ``require_semester`` is set
    """
    result = await db.execute(
        select(SchoolYear.id, SchoolYear.semester)
        .where(SchoolYear.status == SchoolYearStatus.ACTIVE)
        .order_by(SchoolYear.id.desc())
        .limit(1)
    )
    row = result.one_or_none()
    if row is None:
        raise AllocationInputError("No active school year.", code="NO_ACTIVE_SCHOOL_YEAR")

    semester = row.semester if row.semester and row.semester > 0 else None
    if require_semester and semester is None:
        raise AllocationInputError(
            "Active semester not set on active school year.",
            code="NO_ACTIVE_SEMESTER",
            details={"school_year_id": row.id}
        )
    return ActiveSchoolYear(id=row.id, semester=semester)


def _active_roster_filter(program_id: int, year_level: int):
    return (
        Student.program_id == program_id,
        Student.year_level == year_level,
        Student.status == StudentStatus.ACTIVE,
    )


async def count_active_students(db: AsyncSession, program_id: int, year_level: int) -> int:
    result = await db.execute(
        select(func.count(Student.id)).where(*_active_roster_filter(program_id, year_level))
    )
    return int(result.scalar() or 0)


async def list_active_student_ids(
    db: AsyncSession,
    program_id: int,
    year_level: int,
    after_id: int = 0,
) -> List[int]:
    """Active students of a (program, year level), by id ascending."""
    result = await db.execute(
        select(Student.id)
        .where(*_active_roster_filter(program_id, year_level), Student.id > after_id)
        .order_by(Student.id)
    )
    return list(result.scalars().all())


async def list_bucket_course_ids(
    db: AsyncSession,
    program_id: int,
    year_level: int,
    semester: int,
) -> List[int]:
    """Courses of a bucket in stable order: course code, then id."""
    result = await db.execute(
        select(Course.id)
        .where(
            Course.program_id == program_id,
            Course.year_level == year_level,
            Course.semester == semester,
        )
        .order_by(Course.course_code, Course.id)
    )
    return list(result.scalars().all())


async def list_program_ids(db: AsyncSession) -> List[int]:
    result = await db.execute(select(Program.id).order_by(Program.code, Program.id))
    return list(result.scalars().all())
