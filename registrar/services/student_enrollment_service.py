"""
Student Enrollment Service

Places newly created students into the courses of their bucket for the
active school year. Called after a student is added manually, by the CSV
import worker and after year promotion.

No sections are provisioned here; when every section of a course is full
the enrollment is stored unsectioned and shows up in the counters.
"""
import logging
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from registrar.config.settings import settings
from registrar.exceptions import AllocationInputError, AllocationTransactionError, StudentNotFoundError
from registrar.orm.student import Student, StudentStatus
from registrar.schemas.allocation import AllocationCounters
from registrar.services.allocation_lock import allocation_lock, school_year_key
from registrar.services.catalog_providers import get_active_school_year, list_bucket_course_ids
from registrar.services.placement_allocator import OccupancySnapshot, run_placement_batch

logger = logging.getLogger(__name__)


async def _resolve_term(db: AsyncSession, semester: Optional[int]) -> Tuple[int, int]:
    school_year = await get_active_school_year(db)
    semester = semester if semester and semester > 0 else school_year.semester
    if semester is None:
        raise AllocationInputError(
            "Active semester not set on active school year.",
            code="NO_ACTIVE_SEMESTER",
            details={"school_year_id": school_year.id}
        )
    return school_year.id, semester


async def _load_students(db: AsyncSession, student_ids: Sequence[int]):
    result = await db.execute(
        select(Student.id, Student.program_id, Student.year_level, Student.status)
        .where(Student.id.in_(list(student_ids)))
    )
    return {row.id: row for row in result.all()}


async def _enroll_batch(
    db: AsyncSession,
    snapshot: OccupancySnapshot,
    semester: int,
    student_ids: Sequence[int],
    course_cache: Dict[Tuple[int, int], List[int]],
) -> AllocationCounters:
    students = await _load_students(db, student_ids)
    pairs = []
    for student_id in student_ids:
        student = students.get(student_id)
        if student is None:
            logger.warning(f"[PLACEMENT] student={student_id} not found, skipped")
            continue
        if student.status != StudentStatus.ACTIVE:
            logger.debug(f"[PLACEMENT] student={student_id} inactive, skipped")
            continue
        bucket = (student.program_id, student.year_level)
        if bucket not in course_cache:
            course_cache[bucket] = await list_bucket_course_ids(db, student.program_id, student.year_level, semester)
        pairs.extend((student_id, course_id) for course_id in course_cache[bucket])

    if not pairs:
        return AllocationCounters()
    await snapshot.load(db, {course_id for _, course_id in pairs})
    return await run_placement_batch(db, snapshot, pairs)


async def enroll_student(
    db: AsyncSession,
    student_id: int,
    semester: Optional[int] = None,
) -> AllocationCounters:
    """
    EnrollStudent: place one student into every course of their
    (program, year level, semester) bucket.

    ``semester`` defaults to the active school year's semester.

    Raises:
        StudentNotFoundError: Unknown student
        AllocationInputError: No active school year or no semester to use
        AllocationTransactionError: The placement was rolled back
    """
    exists = (await db.execute(select(Student.id).where(Student.id == student_id))).scalar_one_or_none()
    if exists is None:
        raise StudentNotFoundError(student_id)

    school_year_id, semester = await _resolve_term(db, semester)
    async with allocation_lock(db, school_year_key(school_year_id)):
        snapshot = OccupancySnapshot(school_year_id)
        counters = await _enroll_batch(db, snapshot, semester, [student_id], {})

    logger.info(
        f"[PLACEMENT] student={student_id} sy={school_year_id} sem={semester} "
        f"inserted={counters.inserted} updated={counters.updated} skipped={counters.skipped} "
        f"unsectioned={counters.unsectioned}"
    )
    return counters


async def enroll_students(
    db: AsyncSession,
    student_ids: Sequence[int],
    semester: Optional[int] = None,
    batch_size: Optional[int] = None,
) -> AllocationCounters:
    """
    EnrollStudents: EnrollStudent for a stream of students, committing every
    ``batch_size`` students (ALLOCATION_BATCH_SIZE by default). A failed batch
    is rolled back and counted in ``failed``; later batches still run.
    Unknown or inactive students are ignored.
    """
    totals = AllocationCounters()
    if not student_ids:
        return totals

    batch_size = max(1, batch_size or settings.ALLOCATION_BATCH_SIZE)
    school_year_id, semester = await _resolve_term(db, semester)
    course_cache: Dict[Tuple[int, int], List[int]] = {}

    async with allocation_lock(db, school_year_key(school_year_id)):
        snapshot = OccupancySnapshot(school_year_id)
        for start in range(0, len(student_ids), batch_size):
            chunk = list(student_ids[start:start + batch_size])
            try:
                batch = await _enroll_batch(db, snapshot, semester, chunk, course_cache)
            except AllocationTransactionError:
                totals.failed += 1
                continue
            totals.merge(batch)

    logger.info(
        f"[PLACEMENT] intake of {len(student_ids)} student(s) sy={school_year_id} sem={semester}: "
        f"inserted={totals.inserted} updated={totals.updated} skipped={totals.skipped} "
        f"unsectioned={totals.unsectioned} failed_batches={totals.failed}"
    )
    return totals
