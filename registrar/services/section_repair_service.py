"""
Section Repair Service

Operator-triggered consistency repairs:
- rebalance_overcapacity: relieve over-full sections of a school year
- dedupe_sections: collapse sections sharing (course, normalized code)
- reset_sections: destructive removal of sections under a filter
- recount_occupancy: rewrite the cached enrolled_count from enrollment rows

Together with the placement allocator these are the only writers of
``sections.enrolled_count``.
"""
import logging
import math
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import select, update, delete, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from registrar.config.settings import settings
from registrar.exceptions import AllocationTransactionError, SectionConflictError
from registrar.orm.course import Course
from registrar.orm.enrollment import Enrollment
from registrar.orm.section import InstructorSection, Section, SectionStatus
from registrar.schemas.allocation import (
    DedupeResult, RebalanceResult, RecountResult, ResetFilter, ResetPolicy,
    ResetResult, SectionStatusEntry,
)
from registrar.services.allocation_lock import SECTIONS_KEY, allocation_lock, school_year_key
from registrar.services.catalog_providers import get_active_school_year
from registrar.services.demand_estimator import estimate_sections_needed, resolve_target_capacity
from registrar.services.placement_allocator import OccupancySnapshot, choose_section
from registrar.services.section_provisioner import list_section_codes, top_up_course_sections

logger = logging.getLogger(__name__)


def _live_occupancy(school_year_id: Optional[int] = None):
    """Subquery (section_id, occ): enrollments referencing each section."""
    stmt = (
        select(Enrollment.section_id, func.count(Enrollment.id).label("occ"))
        .where(Enrollment.section_id.is_not(None))
        .group_by(Enrollment.section_id)
    )
    if school_year_id is not None:
        stmt = stmt.where(Enrollment.school_year_id == school_year_id)
    return stmt.subquery()


async def _sync_enrolled_counts(db: AsyncSession, section_ids: Sequence[int]) -> int:
    """
    Set enrolled_count to the live occupancy across all school years.
    Returns how many rows changed.
    """
    if not section_ids:
        return 0
    live = _live_occupancy()
    rows = (await db.execute(
        select(Section.id, Section.enrolled_count, func.coalesce(live.c.occ, 0))
        .outerjoin(live, live.c.section_id == Section.id)
        .where(Section.id.in_(list(section_ids)))
        .order_by(Section.id)
    )).all()

    corrected = 0
    for section_id, cached, actual in rows:
        if cached != actual:
            await db.execute(
                update(Section).where(Section.id == section_id).values(enrolled_count=actual)
            )
            corrected += 1
    return corrected


# =============================================================================
# Rebalance
# =============================================================================

async def _rebalance_course(
    db: AsyncSession,
    course_id: int,
    school_year_id: int,
    capacity: int,
) -> Tuple[int, int]:
    """Returns (sections created, enrollments moved). Does not commit."""
    total = int((await db.execute(
        select(func.count(Enrollment.id)).where(
            Enrollment.course_id == course_id,
            Enrollment.school_year_id == school_year_id,
        )
    )).scalar() or 0)
    needed = estimate_sections_needed(total, capacity, minimum=0)

    created = (await top_up_course_sections(db, course_id, needed, capacity)).created

    active_capacity = int((await db.execute(
        select(func.coalesce(func.sum(Section.capacity), 0)).where(
            Section.course_id == course_id,
            Section.status == SectionStatus.ACTIVE,
        )
    )).scalar() or 0)
    if active_capacity < total:
        extra = math.ceil((total - active_capacity) / capacity)
        existing = len(await list_section_codes(db, course_id))
        created += (await top_up_course_sections(db, course_id, existing + extra, capacity)).created

    snapshot = await OccupancySnapshot(school_year_id).load(db, [course_id])
    slots = snapshot.slots(course_id)

    moved = 0
    for source in sorted(slots, key=lambda s: (s.code, s.section_id)):
        excess = source.occupancy - source.capacity
        if excess <= 0:
            continue
        # newest enrollments leave first
        victims = (await db.execute(
            select(Enrollment.id)
            .where(
                Enrollment.section_id == source.section_id,
                Enrollment.school_year_id == school_year_id,
            )
            .order_by(Enrollment.id.desc())
            .limit(excess)
        )).scalars().all()

        for enrollment_id in victims:
            target = choose_section([s for s in slots if s.section_id != source.section_id])
            if target is None:
                logger.warning(
                    f"[REBALANCE] course={course_id} section={source.code} still over capacity, no room left"
                )
                break
            await db.execute(
                update(Enrollment).where(Enrollment.id == enrollment_id).values(section_id=target.section_id)
            )
            source.occupancy -= 1
            target.occupancy += 1
            moved += 1
            logger.debug(f"[REBALANCE] enrollment={enrollment_id} {source.code} -> {target.code}")

    # cached counts span every school year
    await _sync_enrolled_counts(db, [s.section_id for s in slots])
    return created, moved


async def rebalance_overcapacity(
    db: AsyncSession,
    school_year_id: Optional[int] = None,
    target_capacity: Optional[int] = None,
) -> RebalanceResult:
    """
    RebalanceOvercapacity: for every course with enrollments in the school
    year (the active one by default), size sections from the enrollment
    count, add sections where capacity falls short and move the excess out
    of over-full sections. One transaction per course.
    """
    capacity = resolve_target_capacity(target_capacity)
    if school_year_id is None:
        school_year_id = (await get_active_school_year(db)).id

    result = RebalanceResult()
    async with allocation_lock(db, school_year_key(school_year_id)):
        course_ids = (await db.execute(
            select(Enrollment.course_id)
            .where(Enrollment.school_year_id == school_year_id)
            .distinct()
            .order_by(Enrollment.course_id)
        )).scalars().all()

        for course_id in course_ids:
            result.scanned += 1
            try:
                created, moved = await _rebalance_course(db, course_id, school_year_id, capacity)
                await db.commit()
            except SQLAlchemyError as e:
                await db.rollback()
                result.failed += 1
                logger.error(f"[REBALANCE] course={course_id} rolled back: {e}")
                continue
            except SectionConflictError:
                await db.rollback()
                result.failed += 1
                logger.warning(f"[REBALANCE] course={course_id} rolled back after concurrent section creation")
                continue
            if created or moved:
                result.touched += 1
            result.created += created
            result.moved += moved

    logger.info(
        f"[REBALANCE] sy={school_year_id} scanned={result.scanned} touched={result.touched} "
        f"created={result.created} moved={result.moved} failed={result.failed}"
    )
    return result


# =============================================================================
# Dedupe
# =============================================================================

def _normalized_code_expr():
    return func.upper(func.trim(Section.section_code))


async def _collapse_group(db: AsyncSession, course_id: int, normalized: str, result: DedupeResult) -> None:
    """Merge one duplicate group into its lowest-id row. Does not commit."""
    ids = (await db.execute(
        select(Section.id)
        .where(Section.course_id == course_id, _normalized_code_expr() == normalized)
        .order_by(Section.id)
    )).scalars().all()
    if len(ids) < 2:
        return
    keep, duplicates = ids[0], list(ids[1:])

    moved = await db.execute(
        update(Enrollment).where(Enrollment.section_id.in_(duplicates)).values(section_id=keep)
    )
    reassigned = moved.rowcount or 0

    assigned = set((await db.execute(
        select(InstructorSection.instructor_id).where(InstructorSection.section_id == keep)
    )).scalars().all())
    instructor_reassigned = 0
    rows = (await db.execute(
        select(InstructorSection.id, InstructorSection.instructor_id)
        .where(InstructorSection.section_id.in_(duplicates))
        .order_by(InstructorSection.id)
    )).all()
    for assignment_id, instructor_id in rows:
        if instructor_id in assigned:
            await db.execute(delete(InstructorSection).where(InstructorSection.id == assignment_id))
            continue
        await db.execute(
            update(InstructorSection).where(InstructorSection.id == assignment_id).values(section_id=keep)
        )
        assigned.add(instructor_id)
        instructor_reassigned += 1

    await db.execute(delete(Section).where(Section.id.in_(duplicates)))
    await db.execute(
        update(Section)
        .where(Section.id == keep, Section.section_code != normalized)
        .values(section_code=normalized)
    )
    await _sync_enrolled_counts(db, [keep])

    result.removed += len(duplicates)
    result.reassigned += reassigned
    result.instructor_reassigned += instructor_reassigned
    logger.info(
        f"[DEDUPE] course={course_id} code={normalized} kept={keep} removed={duplicates} "
        f"enrollments={reassigned} instructors={instructor_reassigned}"
    )


async def dedupe_sections(db: AsyncSession) -> DedupeResult:
    """
    DedupeSections: collapse sections sharing (course, trimmed uppercase code)
    into the lowest-id row. One transaction per group.
    """
    result = DedupeResult()
    async with allocation_lock(db, SECTIONS_KEY):
        normalized = _normalized_code_expr()
        groups = (await db.execute(
            select(Section.course_id, normalized.label("code"))
            .group_by(Section.course_id, normalized)
            .having(func.count(Section.id) > 1)
            .order_by(Section.course_id, normalized)
        )).all()

        for course_id, code in groups:
            result.groups += 1
            try:
                await _collapse_group(db, course_id, code, result)
                await db.commit()
            except SQLAlchemyError as e:
                await db.rollback()
                result.failed += 1
                logger.error(f"[DEDUPE] course={course_id} code={code} rolled back: {e}")

    logger.info(
        f"[DEDUPE] groups={result.groups} removed={result.removed} reassigned={result.reassigned} "
        f"instructors={result.instructor_reassigned} failed={result.failed}"
    )
    return result


# =============================================================================
# Reset
# =============================================================================

async def matching_section_ids(db: AsyncSession, section_filter: ResetFilter) -> List[int]:
    """Sections of courses matching the filter. Unset filter fields match everything."""
    stmt = select(Section.id).join(Course, Course.id == Section.course_id)
    if section_filter.program_id is not None:
        stmt = stmt.where(Course.program_id == section_filter.program_id)
    if section_filter.year_level is not None:
        stmt = stmt.where(Course.year_level == section_filter.year_level)
    if section_filter.semester is not None:
        stmt = stmt.where(Course.semester == section_filter.semester)
    return list((await db.execute(stmt.order_by(Section.id))).scalars().all())


async def reset_sections(
    db: AsyncSession,
    section_filter: ResetFilter,
    policy: Optional[ResetPolicy] = None,
) -> ResetResult:
    """
    ResetSections: delete every section under the filter, in one transaction.

    Irreversible. Instructor assignments of the sections are deleted; their
    enrollments are deleted (``delete``) or kept with the section cleared
    (``detach``). Default policy comes from SECTION_RESET_POLICY.

    Raises:
        AllocationTransactionError: Nothing was deleted
    """
    policy = policy or ResetPolicy(settings.SECTION_RESET_POLICY)
    result = ResetResult()

    async with allocation_lock(db, SECTIONS_KEY):
        section_ids = await matching_section_ids(db, section_filter)
        if not section_ids:
            logger.info(f"[RESET] no sections match {section_filter.model_dump()}")
            return result

        try:
            assignments = await db.execute(
                delete(InstructorSection).where(InstructorSection.section_id.in_(section_ids))
            )
            result.instructor_assignments_deleted = assignments.rowcount or 0

            if policy == ResetPolicy.DELETE:
                enrollments = await db.execute(
                    delete(Enrollment).where(Enrollment.section_id.in_(section_ids))
                )
                result.enrollments_deleted = enrollments.rowcount or 0
            else:
                enrollments = await db.execute(
                    update(Enrollment).where(Enrollment.section_id.in_(section_ids)).values(section_id=None)
                )
                result.enrollments_detached = enrollments.rowcount or 0

            sections = await db.execute(delete(Section).where(Section.id.in_(section_ids)))
            result.deleted = sections.rowcount or 0
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error(f"[RESET] rolled back: {e}")
            raise AllocationTransactionError(
                "Section reset failed", details={"sections": len(section_ids)}
            ) from e

    logger.warning(
        f"[RESET] filter={section_filter.model_dump()} policy={policy.value} deleted={result.deleted} "
        f"enrollments_deleted={result.enrollments_deleted} enrollments_detached={result.enrollments_detached} "
        f"instructor_assignments_deleted={result.instructor_assignments_deleted}"
    )
    return result


# =============================================================================
# Recount and status
# =============================================================================

async def recount_occupancy(db: AsyncSession, school_year_id: Optional[int] = None) -> RecountResult:
    """
    RecountOccupancy: rewrite cached enrolled_count values from enrollment rows.

    The count always covers every school year. ``school_year_id`` only narrows
    which sections are scanned: those referenced by that year's enrollments.
    """
    key = school_year_key(school_year_id) if school_year_id is not None else SECTIONS_KEY
    async with allocation_lock(db, key):
        stmt = select(Section.id).order_by(Section.id)
        if school_year_id is not None:
            stmt = stmt.where(Section.id.in_(
                select(Enrollment.section_id).where(Enrollment.school_year_id == school_year_id)
            ))
        section_ids = (await db.execute(stmt)).scalars().all()
        try:
            corrected = await _sync_enrolled_counts(db, section_ids)
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            raise AllocationTransactionError("Occupancy recount failed") from e

    logger.info(f"[RECOUNT] sy={school_year_id} scanned={len(section_ids)} corrected={corrected}")
    return RecountResult(scanned=len(section_ids), corrected=corrected)


async def section_status(
    db: AsyncSession,
    course_id: Optional[int] = None,
    school_year_id: Optional[int] = None,
    section_ids: Optional[Sequence[int]] = None,
) -> List[SectionStatusEntry]:
    """Read-only snapshot of sections with cached and live occupancy."""
    live = _live_occupancy(school_year_id)
    stmt = (
        select(
            Section.id, Section.course_id, Section.section_code, Section.capacity,
            Section.enrolled_count, Section.status, func.coalesce(live.c.occ, 0)
        )
        .outerjoin(live, live.c.section_id == Section.id)
        .order_by(Section.course_id, Section.section_code, Section.id)
    )
    if course_id is not None:
        stmt = stmt.where(Section.course_id == course_id)
    if section_ids is not None:
        stmt = stmt.where(Section.id.in_(list(section_ids)))
    rows = (await db.execute(stmt)).all()

    instructors: Dict[int, List[int]] = {}
    if rows:
        assignments = await db.execute(
            select(InstructorSection.section_id, InstructorSection.instructor_id)
            .where(InstructorSection.section_id.in_([row[0] for row in rows]))
            .order_by(InstructorSection.section_id, InstructorSection.instructor_id)
        )
        for section_id, instructor_id in assignments.all():
            instructors.setdefault(section_id, []).append(instructor_id)

    return [
        SectionStatusEntry(
            section_id=row[0],
            course_id=row[1],
            section_code=row[2],
            capacity=row[3],
            enrolled_count=row[4],
            status=row[5].value if isinstance(row[5], SectionStatus) else str(row[5]),
            occupancy=int(row[6]),
            instructor_ids=instructors.get(row[0], []),
        )
        for row in rows
    ]
