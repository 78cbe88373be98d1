"""
Bulk Orchestrator

Drives demand estimation, provisioning and placement over buckets
(program, year level, semester):

    count active students -> sections needed -> top up every course
    -> place every (student, course) pair in batches

Units of work are one course (provisioning) and one batch of students
(placement). A failed unit is rolled back, logged and counted; the run
continues with the next unit. Request-level problems (no active school year,
no semester, missing selector) abort before anything is written.

Courses are processed by course code and students by id, so two runs over
the same data make the same decisions.
"""
import logging
from datetime import datetime
from typing import Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from registrar.config.settings import settings
from registrar.exceptions import AllocationInputError, AllocationTransactionError
from registrar.orm.allocation_run import AllocationRun, AllocationRunStatus
from registrar.schemas.allocation import AllocationCounters, BulkRunResult
from registrar.services.allocation_lock import allocation_lock, school_year_key
from registrar.services.catalog_providers import (
    count_active_students, get_active_school_year, list_active_student_ids,
    list_bucket_course_ids, list_program_ids,
)
from registrar.services.demand_estimator import estimate_sections_needed, resolve_target_capacity
from registrar.services.placement_allocator import OccupancySnapshot, allocate_students
from registrar.services.section_provisioner import provision_course_unit

logger = logging.getLogger(__name__)

BucketKey = Tuple[int, int, int]


def _require_selector(name: str, value: Optional[int]) -> int:
    if value is None or value <= 0:
        raise AllocationInputError(
            "Program, year and semester required",
            code="MISSING_BUCKET_SELECTOR",
            details={"missing": name}
        )
    return value


async def process_bucket(
    db: AsyncSession,
    snapshot: OccupancySnapshot,
    bucket: BucketKey,
    capacity: int,
    minimum_sections: int,
    after_student_id: int = 0,
    checkpoint=None,
    resumed: bool = False,
) -> AllocationCounters:
    """
    Provision then place one bucket. Commits per course and per batch.

    ``checkpoint`` receives counter deltas: one per provisioned course, then
    one per committed placement batch. A ``resumed`` bucket was already
    counted in ``buckets_touched`` by the interrupted run.
    """
    program_id, year_level, semester = bucket
    counters = AllocationCounters()

    course_ids = await list_bucket_course_ids(db, program_id, year_level, semester)
    if not course_ids:
        logger.debug(f"[BULK] bucket={bucket} has no courses")
        return counters

    demand = await count_active_students(db, program_id, year_level)
    needed = estimate_sections_needed(demand, capacity, minimum=minimum_sections)

    for index, course_id in enumerate(course_ids):
        unit = AllocationCounters(buckets_touched=int(index == 0 and not resumed))
        try:
            provisioned = await provision_course_unit(db, course_id, needed, capacity)
        except AllocationTransactionError:
            unit.failed = 1
        else:
            if provisioned is None:
                unit.failed = 1
                logger.warning(f"[BULK] bucket={bucket} course={course_id} lost a section code race, counted as failed")
            elif provisioned.created:
                unit.sections_created = provisioned.created
                unit.courses_touched = 1
        counters.merge(unit)
        if checkpoint is not None:
            await checkpoint(after_student_id, unit)

    student_ids = await list_active_student_ids(db, program_id, year_level, after_id=after_student_id)
    placement = await allocate_students(
        db, snapshot, student_ids, course_ids,
        batch_size=settings.ALLOCATION_BATCH_SIZE,
        checkpoint=checkpoint,
    )
    counters.merge(placement)

    logger.info(
        f"[BULK] bucket={bucket} demand={demand} needed={needed} "
        f"created={counters.sections_created} placed={counters.placed} "
        f"unsectioned={counters.unsectioned} failed={counters.failed}"
    )
    return counters


async def allocate_bucket(
    db: AsyncSession,
    program_id: Optional[int],
    year_level: Optional[int],
    semester: Optional[int],
    target_capacity: Optional[int] = None,
) -> AllocationCounters:
    """
    AllocateBucket: top up sections for one explicit bucket and place its
    active students for the active school year.

    Top-up path: the floor is SECTION_TOPUP_MIN_SECTIONS (0 by default), so a
    bucket without students gets no placeholder sections.

    Raises:
        AllocationInputError: Missing selector or no active school year
    """
    bucket = (
        _require_selector("program_id", program_id),
        _require_selector("year_level", year_level),
        _require_selector("semester", semester),
    )
    capacity = resolve_target_capacity(target_capacity)
    school_year = await get_active_school_year(db)

    async with allocation_lock(db, school_year_key(school_year.id)):
        snapshot = OccupancySnapshot(school_year.id)
        return await process_bucket(
            db, snapshot, bucket, capacity,
            minimum_sections=settings.SECTION_TOPUP_MIN_SECTIONS,
        )


# =============================================================================
# Bulk run over the active school year
# =============================================================================

async def _save_run(db: AsyncSession, run_id: int, **values) -> None:
    await db.execute(
        update(AllocationRun).where(AllocationRun.id == run_id).values(**values)
    )
    await db.commit()


async def _start_run(db: AsyncSession, school_year_id: int, semester: int, resume_run_id: Optional[int]):
    """Create a run record, or reopen an unfinished one. Returns (run_id, counters, cursor)."""
    if resume_run_id is None:
        run = AllocationRun(
            school_year_id=school_year_id,
            semester=semester,
            status=AllocationRunStatus.RUNNING,
            counters={},
            cursor={"done": [], "bucket": None, "last_student_id": 0},
        )
        db.add(run)
        await db.flush()
        run_id = run.id
        await db.commit()
        db.expunge(run)
        return run_id, BulkRunResult(), {"done": [], "bucket": None, "last_student_id": 0}

    row = (await db.execute(
        select(
            AllocationRun.id, AllocationRun.school_year_id, AllocationRun.semester,
            AllocationRun.status, AllocationRun.counters, AllocationRun.cursor
        ).where(AllocationRun.id == resume_run_id)
    )).one_or_none()
    if row is None:
        raise AllocationInputError(f"Allocation run {resume_run_id} not found", code="RUN_NOT_FOUND")
    if row.status == AllocationRunStatus.COMPLETED:
        raise AllocationInputError(f"Allocation run {resume_run_id} already completed", code="RUN_COMPLETED")
    if row.school_year_id != school_year_id or row.semester != semester:
        raise AllocationInputError(
            f"Allocation run {resume_run_id} belongs to another school year or semester",
            code="RUN_SCOPE_MISMATCH"
        )

    await _save_run(db, row.id, status=AllocationRunStatus.RUNNING, last_error=None, finished_at=None)
    previous = {k: v for k, v in (row.counters or {}).items() if k in AllocationCounters.model_fields}
    cursor = dict(row.cursor or {})
    cursor.setdefault("done", [])
    cursor.setdefault("bucket", None)
    cursor.setdefault("last_student_id", 0)
    logger.info(f"[BULK] resuming run={row.id} after {len(cursor['done'])} bucket(s)")
    return row.id, BulkRunResult(**previous), cursor


async def run_bulk_for_active_year(
    db: AsyncSession,
    resume_run_id: Optional[int] = None,
    target_capacity: Optional[int] = None,
) -> BulkRunResult:
    """
    RunBulkForActiveYear: every program, year levels from
    ALLOCATION_YEAR_LEVELS, the active school year's configured semester.

    Forced path: the floor is SECTION_FORCED_MIN_SECTIONS (1 by default).
    Progress is persisted in ``allocation_runs`` after each provisioned course
    and each committed batch;
    pass ``resume_run_id`` to continue an interrupted run.

    Raises:
        AllocationInputError: No active school year, no semester on it, no
            programs, or an unusable resume id
    """
    school_year = await get_active_school_year(db, require_semester=True)
    semester = school_year.semester
    program_ids = await list_program_ids(db)
    if not program_ids:
        raise AllocationInputError("No programs found.", code="NO_PROGRAMS")
    capacity = resolve_target_capacity(target_capacity)

    async with allocation_lock(db, school_year_key(school_year.id)):
        run_id, result, cursor = await _start_run(db, school_year.id, semester, resume_run_id)
        result.run_id = run_id
        result.school_year_id = school_year.id
        result.semester = semester
        result.programs_touched = 0

        done = {tuple(key) for key in cursor["done"]}
        snapshot = OccupancySnapshot(school_year.id)

        try:
            for program_id in program_ids:
                result.programs_touched += 1
                for year_level in settings.ALLOCATION_YEAR_LEVELS:
                    bucket = (program_id, year_level, semester)
                    if bucket in done:
                        continue

                    resumed = bool(cursor.get("bucket")) and tuple(cursor["bucket"]) == bucket
                    after = int(cursor.get("last_student_id") or 0) if resumed else 0
                    partial = AllocationCounters()

                    async def checkpoint(last_student_id: int, delta: AllocationCounters, bucket=bucket, partial=partial):
                        partial.merge(delta)
                        running = result.model_copy().merge(partial)
                        await _save_run(
                            db, run_id,
                            cursor={"done": [list(k) for k in sorted(done)], "bucket": list(bucket),
                                    "last_student_id": last_student_id},
                            counters=running.model_dump(include=set(AllocationCounters.model_fields)),
                        )

                    bucket_counters = await process_bucket(
                        db, snapshot, bucket, capacity,
                        minimum_sections=settings.SECTION_FORCED_MIN_SECTIONS,
                        after_student_id=after,
                        checkpoint=checkpoint,
                        resumed=resumed,
                    )
                    result.merge(bucket_counters)
                    done.add(bucket)
                    await _save_run(
                        db, run_id,
                        cursor={"done": [list(k) for k in sorted(done)], "bucket": None, "last_student_id": 0},
                        counters=result.model_dump(include=set(AllocationCounters.model_fields)),
                    )
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error(f"[BULK] run={run_id} aborted: {e}")
            await _save_run(
                db, run_id,
                status=AllocationRunStatus.FAILED,
                last_error=str(e)[:2000],
                finished_at=datetime.utcnow(),
            )
            raise AllocationTransactionError(
                f"Bulk allocation run {run_id} aborted", details={"run_id": run_id}
            ) from e

        await _save_run(
            db, run_id,
            status=AllocationRunStatus.COMPLETED,
            finished_at=datetime.utcnow(),
            counters=result.model_dump(include=set(AllocationCounters.model_fields)),
        )

    logger.info(
        f"[BULK] run={run_id} sy={school_year.id} sem={semester}: created {result.sections_created} "
        f"section(s) across {result.courses_touched} course(s); enrollments: inserted {result.inserted}, "
        f"updated {result.updated}, skipped {result.skipped}, unsectioned {result.unsectioned}, "
        f"failed units {result.failed}, across {result.programs_touched} program(s)"
    )
    return result


async def get_allocation_run(db: AsyncSession, run_id: int) -> Optional[dict]:
    run = await db.get(AllocationRun, run_id, populate_existing=True)
    return run.to_dict() if run is not None else None
