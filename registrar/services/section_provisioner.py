"""
Section Provisioner

Creates the missing sections of a course so that its section count reaches
the estimated demand. Existing sections are never touched, which makes the
operation idempotent: once demand is met a re-run creates nothing.

Each course is one unit of work. A uniqueness conflict on (course, code)
means another writer created the section first; that course is rolled back
and reported, the caller moves on.
"""
import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from registrar.config.settings import settings
from registrar.exceptions import (
    AllocationTransactionError, CourseNotFoundError, SectionConflictError
)
from registrar.orm.course import Course
from registrar.orm.section import Section, SectionStatus
from registrar.schemas.allocation import ProvisionResult
from registrar.services.catalog_providers import count_active_students
from registrar.services.demand_estimator import (
    estimate_sections_needed, resolve_target_capacity, sections_to_create
)
from registrar.services.section_codes import next_section_code

logger = logging.getLogger(__name__)


async def list_section_codes(db: AsyncSession, course_id: int) -> List[str]:
    """Codes of every section of the course (any status), in code order."""
    result = await db.execute(
        select(Section.section_code)
        .where(Section.course_id == course_id)
        .order_by(Section.section_code)
    )
    return [str(code) for code in result.scalars().all()]


async def top_up_course_sections(
    db: AsyncSession,
    course_id: int,
    sections_needed: int,
    capacity: int,
) -> ProvisionResult:
    """
    Add sections until the course has ``sections_needed`` of them.

    Does not commit; the caller owns the transaction.

    Raises:
        SectionConflictError: A section code was taken concurrently
    """
    existing = await list_section_codes(db, course_id)
    current = len(existing)
    to_create = sections_to_create(sections_needed, current)

    result = ProvisionResult(course_id=course_id, sections_needed=sections_needed, existing=current)
    if to_create == 0:
        return result

    for i in range(to_create):
        code = next_section_code(existing, current + i)
        db.add(Section(
            course_id=course_id,
            section_code=code,
            section_name=code,
            capacity=capacity,
            enrolled_count=0,
            status=SectionStatus.ACTIVE,
        ))
        existing.append(code)
        result.codes.append(code)

    try:
        await db.flush()
    except IntegrityError as e:
        logger.warning(f"[PROVISION] course={course_id} code conflict: {e.orig}")
        raise SectionConflictError(
            f"Section code already exists for course {course_id}",
            details={"course_id": course_id, "codes": result.codes}
        )

    result.created = to_create
    logger.info(f"[PROVISION] course={course_id} created {to_create} section(s): {', '.join(result.codes)}")
    return result


async def provision_course_unit(
    db: AsyncSession,
    course_id: int,
    sections_needed: int,
    capacity: int,
) -> Optional[ProvisionResult]:
    """
    One course as one transaction.

    Returns the result, or None when the course lost a code race (rolled back).

    Raises:
        AllocationTransactionError: The database failed this course
    """
    try:
        result = await top_up_course_sections(db, course_id, sections_needed, capacity)
        await db.commit()
        return result
    except SectionConflictError:
        await db.rollback()
        logger.warning(f"[PROVISION] course={course_id} rolled back after concurrent creation")
        return None
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(f"[PROVISION] course={course_id} failed: {e}")
        raise AllocationTransactionError(
            f"Provisioning failed for course {course_id}",
            details={"course_id": course_id}
        ) from e


async def provision_sections(
    db: AsyncSession,
    course_id: int,
    target_capacity: Optional[int] = None,
) -> ProvisionResult:
    """
    ProvisionSections: size a single course from its active roster and create
    the missing sections.

    This is an explicit provisioning request, so the forced floor applies
    (by default a course with no students still gets one section).

    Raises:
        CourseNotFoundError: Unknown course
        AllocationTransactionError: The database failed the course
    """
    capacity = resolve_target_capacity(target_capacity)

    course = await db.get(Course, course_id)
    if course is None:
        raise CourseNotFoundError(course_id)

    demand = await count_active_students(db, course.program_id, course.year_level)
    needed = estimate_sections_needed(demand, capacity, minimum=settings.SECTION_FORCED_MIN_SECTIONS)

    result = await provision_course_unit(db, course_id, needed, capacity)
    if result is None:
        existing = await list_section_codes(db, course_id)
        return ProvisionResult(course_id=course_id, sections_needed=needed, existing=len(existing))
    return result
