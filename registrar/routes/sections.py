"""
Section Allocation Admin API Routes.

Operator endpoints for provisioning, placement and consistency repairs.
Engine exceptions are rendered by the application-level handler.
"""
from typing import List, Optional, Union

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from registrar.config.settings import settings
from registrar.database import get_db
from registrar.errors import BadRequestError, FeatureDisabledError, NotFoundError
from registrar.schemas.allocation import (
    AllocationCounters, BucketRequest, BulkRunRequest, BulkRunResult, DedupeResult,
    EnrollStudentRequest, EnrollStudentsRequest, ProvisionRequest, ProvisionResult,
    RebalanceRequest, RebalanceResult, RecountResult, ResetFilter, ResetRequest,
    ResetResult, SectionStatusEntry,
)
from registrar.services.bulk_orchestrator import allocate_bucket, get_allocation_run, run_bulk_for_active_year
from registrar.services.section_provisioner import provision_sections
from registrar.services.section_repair_service import (
    dedupe_sections, matching_section_ids, rebalance_overcapacity, recount_occupancy,
    reset_sections, section_status,
)
from registrar.services.student_enrollment_service import enroll_student, enroll_students


def check_admin_api_enabled():
    if not settings.FEATURE_SECTION_ADMIN_API:
        raise FeatureDisabledError("FEATURE_SECTION_ADMIN_API")


router = APIRouter(
    prefix="/api/sections",
    tags=["sections"],
    dependencies=[Depends(check_admin_api_enabled)],
)


# =============================================================================
# Provisioning and placement
# =============================================================================

@router.post("/provision", response_model=ProvisionResult)
async def provision(request: ProvisionRequest, db: AsyncSession = Depends(get_db)):
    """Create the missing sections of one course."""
    return await provision_sections(db, request.course_id, request.target_capacity)


@router.post("/allocate", response_model=AllocationCounters)
async def allocate(request: BucketRequest, db: AsyncSession = Depends(get_db)):
    """
    Top up sections and place the active students of one bucket
    (program, year level, semester) for the active school year.
    """
    return await allocate_bucket(
        db,
        program_id=request.program_id,
        year_level=request.year_level,
        semester=request.semester,
        target_capacity=request.target_capacity,
    )


@router.post("/bulk", response_model=BulkRunResult)
async def bulk(request: BulkRunRequest, db: AsyncSession = Depends(get_db)):
    """Run provisioning and placement for every bucket of the active school year."""
    return await run_bulk_for_active_year(
        db, resume_run_id=request.resume_run_id, target_capacity=request.target_capacity
    )


@router.get("/runs/{run_id}")
async def get_run(run_id: int, db: AsyncSession = Depends(get_db)):
    run = await get_allocation_run(db, run_id)
    if run is None:
        raise NotFoundError("Allocation run", run_id)
    return run


@router.post("/enroll", response_model=AllocationCounters)
async def enroll(request: EnrollStudentRequest, db: AsyncSession = Depends(get_db)):
    """Place one student into every course of their bucket."""
    return await enroll_student(db, request.student_id, request.semester)


@router.post("/enroll/batch", response_model=AllocationCounters)
async def enroll_batch(request: EnrollStudentsRequest, db: AsyncSession = Depends(get_db)):
    if not request.student_ids:
        raise BadRequestError("student_ids must not be empty", details={"field": "student_ids"})
    return await enroll_students(db, request.student_ids, request.semester)


# =============================================================================
# Repairs
# =============================================================================

@router.post("/rebalance", response_model=RebalanceResult)
async def rebalance(request: RebalanceRequest, db: AsyncSession = Depends(get_db)):
    return await rebalance_overcapacity(db, request.school_year_id, request.target_capacity)


@router.post("/dedupe", response_model=DedupeResult)
async def dedupe(db: AsyncSession = Depends(get_db)):
    return await dedupe_sections(db)


@router.post("/reset", response_model=Union[ResetResult, List[SectionStatusEntry]])
async def reset(
    request: ResetRequest,
    confirm: bool = Query(False, description="Without confirmation only the matching sections are listed"),
    db: AsyncSession = Depends(get_db),
):
    """
    Delete every section under the filter. Irreversible.

    Without ``confirm=true`` nothing is deleted and the matching sections
    are returned instead.
    """
    section_filter = ResetFilter(
        program_id=request.program_id,
        year_level=request.year_level,
        semester=request.semester,
    )
    if not confirm:
        ids = await matching_section_ids(db, section_filter)
        return await section_status(db, section_ids=ids)
    return await reset_sections(db, section_filter, request.policy)


@router.post("/recount", response_model=RecountResult)
async def recount(
    school_year_id: Optional[int] = Query(None, gt=0),
    db: AsyncSession = Depends(get_db),
):
    return await recount_occupancy(db, school_year_id)


@router.get("/status", response_model=List[SectionStatusEntry])
async def status(
    course_id: Optional[int] = Query(None, gt=0),
    school_year_id: Optional[int] = Query(None, gt=0),
    db: AsyncSession = Depends(get_db),
):
    """Sections with capacity, cached count, live occupancy and instructors."""
    return await section_status(db, course_id=course_id, school_year_id=school_year_id)
