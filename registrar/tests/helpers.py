"""Read-back helpers for assertions. Column selects, never cached entities."""
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from registrar.orm import Enrollment, Section


async def section_rows(db: AsyncSession, course_id: int):
    """(id, code, capacity, enrolled_count) of a course's sections, by code."""
    result = await db.execute(
        select(Section.id, Section.section_code, Section.capacity, Section.enrolled_count)
        .where(Section.course_id == course_id)
        .order_by(Section.section_code, Section.id)
    )
    return result.all()


async def occupancy_by_code(db: AsyncSession, course_id: int, school_year_id: int):
    """{section code: number of enrollments referencing it}."""
    rows = await section_rows(db, course_id)
    occupancy = {}
    for section_id, code, _, _ in rows:
        count = (await db.execute(
            select(Enrollment.id).where(
                Enrollment.section_id == section_id,
                Enrollment.school_year_id == school_year_id,
            )
        )).all()
        occupancy[code] = len(count)
    return occupancy


async def enrollment_rows(db: AsyncSession, course_id: Optional[int] = None):
    stmt = select(
        Enrollment.id, Enrollment.student_id, Enrollment.course_id,
        Enrollment.school_year_id, Enrollment.section_id,
    ).order_by(Enrollment.id)
    if course_id is not None:
        stmt = stmt.where(Enrollment.course_id == course_id)
    return (await db.execute(stmt)).all()
