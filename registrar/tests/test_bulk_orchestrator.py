"""
Bulk orchestrator tests: AllocateBucket and RunBulkForActiveYear.
"""
import pytest
from sqlalchemy import func, select

from registrar.exceptions import AllocationInputError, AllocationTransactionError
from registrar.orm import AllocationRun, AllocationRunStatus, Enrollment, Section, SchoolYearStatus
from registrar.services import bulk_orchestrator, placement_allocator, section_provisioner
from registrar.services.bulk_orchestrator import allocate_bucket, get_allocation_run, run_bulk_for_active_year
from registrar.tests.helpers import enrollment_rows, occupancy_by_code, section_rows


async def _count(db, model):
    return (await db.execute(select(func.count(model.id)))).scalar()


class TestAllocateBucket:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("selector", [
        {"program_id": None, "year_level": 1, "semester": 1},
        {"program_id": 1, "year_level": None, "semester": 1},
        {"program_id": 1, "year_level": 1, "semester": 0},
    ])
    async def test_missing_selector_rejected_before_writes(self, db_session, factory, selector):
        program = await factory.program()
        await factory.course(program)
        await factory.school_year(semester=1)
        await factory.students(program, count=5)

        with pytest.raises(AllocationInputError) as exc_info:
            await allocate_bucket(db_session, **selector)

        assert exc_info.value.code == "MISSING_BUCKET_SELECTOR"
        assert await _count(db_session, Section) == 0
        assert await _count(db_session, Enrollment) == 0

    @pytest.mark.asyncio
    async def test_no_active_school_year(self, db_session, factory):
        program = await factory.program()
        await factory.course(program)
        await factory.school_year(semester=1, status=SchoolYearStatus.INACTIVE)

        with pytest.raises(AllocationInputError) as exc_info:
            await allocate_bucket(db_session, program, 1, 1)

        assert exc_info.value.code == "NO_ACTIVE_SCHOOL_YEAR"
        assert await _count(db_session, Section) == 0

    @pytest.mark.asyncio
    async def test_provisions_and_spreads(self, db_session, factory):
        program = await factory.program()
        course = await factory.course(program)
        school_year = await factory.school_year(semester=1)
        await factory.students(program, count=45)

        counters = await allocate_bucket(db_session, program, 1, 1, target_capacity=30)

        assert counters.sections_created == 2
        assert counters.courses_touched == 1
        assert counters.buckets_touched == 1
        assert counters.inserted == 45
        assert counters.unsectioned == 0
        assert await occupancy_by_code(db_session, course, school_year) == {"A": 23, "B": 22}

    @pytest.mark.asyncio
    async def test_every_course_of_bucket_is_filled(self, db_session, factory):
        program = await factory.program()
        courses = [await factory.course(program, code=f"IT10{i}") for i in range(3)]
        other_semester = await factory.course(program, code="IT200", semester=2)
        await factory.school_year(semester=1)
        await factory.students(program, count=10)

        counters = await allocate_bucket(db_session, program, 1, 1)

        assert counters.inserted == 30
        for course in courses:
            assert len(await enrollment_rows(db_session, course)) == 10
        assert await enrollment_rows(db_session, other_semester) == []
        assert await section_rows(db_session, other_semester) == []

    @pytest.mark.asyncio
    async def test_top_up_does_not_create_placeholder_sections(self, db_session, factory):
        program = await factory.program()
        course = await factory.course(program)
        await factory.school_year(semester=1)

        counters = await allocate_bucket(db_session, program, 1, 1)

        assert counters.sections_created == 0
        assert counters.buckets_touched == 1
        assert await section_rows(db_session, course) == []

    @pytest.mark.asyncio
    async def test_no_section_over_capacity_after_allocation(self, db_session, factory):
        program = await factory.program()
        course = await factory.course(program)
        school_year = await factory.school_year(semester=1)
        await factory.section(course, "A", capacity=10)
        await factory.students(program, count=37)

        counters = await allocate_bucket(db_session, program, 1, 1, target_capacity=10)

        capacities = {r.section_code: r.capacity for r in await section_rows(db_session, course)}
        occupancy = await occupancy_by_code(db_session, course, school_year)
        assert all(occupancy[code] <= capacities[code] for code in capacities)
        assert counters.inserted + counters.unsectioned == 37
        assert counters.unsectioned == 0

    @pytest.mark.asyncio
    async def test_rerun_is_idempotent(self, db_session, factory):
        program = await factory.program()
        course = await factory.course(program)
        await factory.school_year(semester=1)
        await factory.students(program, count=45)

        await allocate_bucket(db_session, program, 1, 1)
        second = await allocate_bucket(db_session, program, 1, 1)

        assert second.sections_created == 0
        assert second.skipped == 45
        assert second.inserted == 0
        assert len(await enrollment_rows(db_session, course)) == 45
        assert len(await section_rows(db_session, course)) == 2

    @pytest.mark.asyncio
    async def test_failed_course_is_counted_and_others_continue(self, db_session, factory, monkeypatch):
        program = await factory.program()
        broken = await factory.course(program, code="A-BROKEN")
        healthy = await factory.course(program, code="B-HEALTHY")
        await factory.school_year(semester=1)
        await factory.students(program, count=5)
        original = bulk_orchestrator.provision_course_unit

        async def flaky_provision(db, course_id, *args):
            if course_id == broken:
                raise AllocationTransactionError("Provisioning failed", details={"course_id": course_id})
            return await original(db, course_id, *args)

        monkeypatch.setattr(bulk_orchestrator, "provision_course_unit", flaky_provision)

        counters = await allocate_bucket(db_session, program, 1, 1)

        assert counters.failed == 1
        assert counters.sections_created == 1
        assert len(await section_rows(db_session, healthy)) == 1
        # the broken course has no section, its students are recorded unsectioned
        assert counters.unsectioned == 5
        assert counters.inserted == 5

    @pytest.mark.asyncio
    async def test_section_code_race_is_counted_as_failed(self, db_session, factory, monkeypatch):
        program = await factory.program()
        raced = await factory.course(program, code="A-RACED")
        healthy = await factory.course(program, code="B-HEALTHY")
        await factory.section(raced, "A")
        await factory.school_year(semester=1)
        await factory.students(program, count=5)
        original = section_provisioner.list_section_codes

        async def stale_codes(db, course_id):
            if course_id == raced:
                return []
            return await original(db, course_id)

        monkeypatch.setattr(section_provisioner, "list_section_codes", stale_codes)

        counters = await allocate_bucket(db_session, program, 1, 1)

        assert counters.failed == 1
        assert counters.sections_created == 1
        assert counters.courses_touched == 1
        assert [r.section_code for r in await section_rows(db_session, raced)] == ["A"]
        assert [r.section_code for r in await section_rows(db_session, healthy)] == ["A"]
        # the raced course keeps its existing section, so nobody is left out
        assert counters.inserted == 10

    @pytest.mark.asyncio
    @pytest.mark.parametrize("capacity", [0, -1])
    async def test_non_positive_capacity_rejected_before_writes(self, db_session, factory, capacity):
        program = await factory.program()
        await factory.course(program)
        await factory.school_year(semester=1)
        await factory.students(program, count=5)

        with pytest.raises(AllocationInputError) as exc_info:
            await allocate_bucket(db_session, program, 1, 1, target_capacity=capacity)

        assert exc_info.value.code == "INVALID_CAPACITY"
        assert await _count(db_session, Section) == 0
        assert await _count(db_session, Enrollment) == 0


class TestRunBulkForActiveYear:

    @pytest.mark.asyncio
    async def test_requires_active_semester(self, db_session, factory):
        program = await factory.program()
        await factory.course(program)
        await factory.school_year(semester=None)
        await factory.students(program, count=3)

        with pytest.raises(AllocationInputError) as exc_info:
            await run_bulk_for_active_year(db_session)

        assert exc_info.value.code == "NO_ACTIVE_SEMESTER"
        assert await _count(db_session, AllocationRun) == 0
        assert await _count(db_session, Section) == 0

    @pytest.mark.asyncio
    async def test_requires_programs(self, db_session, factory):
        await factory.school_year(semester=1)

        with pytest.raises(AllocationInputError):
            await run_bulk_for_active_year(db_session)

    @pytest.mark.asyncio
    async def test_sweeps_programs_and_year_levels(self, db_session, factory, capacity_settings):
        capacity_settings.ALLOCATION_YEAR_LEVELS = [1, 2]
        school_year = await factory.school_year(semester=1)
        it = await factory.program("BSIT")
        cs = await factory.program("BSCS")
        it_y1 = await factory.course(it, year_level=1)
        it_y2 = await factory.course(it, year_level=2)
        cs_y1 = await factory.course(cs, year_level=1)
        summer = await factory.course(it, year_level=1, semester=3)
        await factory.students(it, year_level=1, count=35)
        await factory.students(cs, year_level=1, count=4)

        result = await run_bulk_for_active_year(db_session)

        assert result.school_year_id == school_year
        assert result.semester == 1
        assert result.programs_touched == 2
        assert result.buckets_touched == 3
        # 2 for it_y1, forced 1 for the empty it_y2, 1 for cs_y1
        assert result.sections_created == 4
        assert result.inserted == 39
        assert len(await section_rows(db_session, it_y2)) == 1
        assert await section_rows(db_session, summer) == []
        assert await occupancy_by_code(db_session, it_y1, school_year) == {"A": 18, "B": 17}
        assert await occupancy_by_code(db_session, cs_y1, school_year) == {"A": 4}

    @pytest.mark.asyncio
    async def test_run_record_completed_with_counters(self, db_session, factory):
        program = await factory.program()
        await factory.course(program)
        await factory.school_year(semester=1)
        await factory.students(program, count=3)

        result = await run_bulk_for_active_year(db_session)
        run = await get_allocation_run(db_session, result.run_id)

        assert run["status"] == AllocationRunStatus.COMPLETED.value
        assert run["counters"]["inserted"] == 3
        assert run["finished_at"] is not None
        assert [program, 1, 1] in run["cursor"]["done"]
        assert run["cursor"]["bucket"] is None

    @pytest.mark.asyncio
    async def test_resume_skips_done_buckets(self, db_session, factory, capacity_settings):
        capacity_settings.ALLOCATION_YEAR_LEVELS = [1, 2]
        program = await factory.program()
        y1 = await factory.course(program, year_level=1)
        y2 = await factory.course(program, year_level=2)
        school_year = await factory.school_year(semester=1)
        await factory.students(program, year_level=1, count=3)
        await factory.students(program, year_level=2, count=2)

        interrupted = AllocationRun(
            school_year_id=school_year,
            semester=1,
            status=AllocationRunStatus.FAILED,
            counters={"inserted": 7},
            cursor={"done": [[program, 1, 1]], "bucket": None, "last_student_id": 0},
        )
        db_session.add(interrupted)
        await db_session.commit()

        result = await run_bulk_for_active_year(db_session, resume_run_id=interrupted.id)

        assert result.run_id == interrupted.id
        assert await enrollment_rows(db_session, y1) == []
        assert len(await enrollment_rows(db_session, y2)) == 2
        assert result.inserted == 7 + 2
        run = await get_allocation_run(db_session, interrupted.id)
        assert run["status"] == AllocationRunStatus.COMPLETED.value

    @pytest.mark.asyncio
    async def test_resume_inside_bucket_starts_after_cursor(self, db_session, factory, capacity_settings):
        capacity_settings.ALLOCATION_YEAR_LEVELS = [1]
        program = await factory.program()
        course = await factory.course(program)
        school_year = await factory.school_year(semester=1)
        students = await factory.students(program, count=4)

        interrupted = AllocationRun(
            school_year_id=school_year,
            semester=1,
            status=AllocationRunStatus.RUNNING,
            counters={},
            cursor={"done": [], "bucket": [program, 1, 1], "last_student_id": students[1]},
        )
        db_session.add(interrupted)
        await db_session.commit()

        await run_bulk_for_active_year(db_session, resume_run_id=interrupted.id)

        placed = sorted(r.student_id for r in await enrollment_rows(db_session, course))
        assert placed == students[2:]

    @pytest.mark.asyncio
    async def test_completed_run_cannot_be_resumed(self, db_session, factory):
        program = await factory.program()
        await factory.course(program)
        await factory.school_year(semester=1)

        result = await run_bulk_for_active_year(db_session)

        with pytest.raises(AllocationInputError) as exc_info:
            await run_bulk_for_active_year(db_session, resume_run_id=result.run_id)
        assert exc_info.value.code == "RUN_COMPLETED"

    @pytest.mark.asyncio
    async def test_unknown_run_cannot_be_resumed(self, db_session, factory):
        program = await factory.program()
        await factory.course(program)
        await factory.school_year(semester=1)

        with pytest.raises(AllocationInputError) as exc_info:
            await run_bulk_for_active_year(db_session, resume_run_id=404)
        assert exc_info.value.code == "RUN_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_bulk_rerun_is_idempotent(self, db_session, factory):
        program = await factory.program()
        course = await factory.course(program)
        await factory.school_year(semester=1)
        await factory.students(program, count=31)

        first = await run_bulk_for_active_year(db_session)
        second = await run_bulk_for_active_year(db_session)

        assert first.sections_created == 2
        assert second.sections_created == 0
        assert second.skipped == 31
        assert len(await enrollment_rows(db_session, course)) == 31

    @pytest.mark.asyncio
    async def test_interrupted_run_resumes_with_full_counters(self, db_session, factory, capacity_settings, monkeypatch):
        capacity_settings.ALLOCATION_YEAR_LEVELS = [1]
        capacity_settings.ALLOCATION_BATCH_SIZE = 20
        program = await factory.program()
        course = await factory.course(program)
        await factory.school_year(semester=1)
        await factory.students(program, count=45)
        original = placement_allocator.run_placement_batch
        calls = []

        async def crash_on_second_batch(db, snapshot, pairs):
            calls.append(len(pairs))
            if len(calls) == 2:
                raise RuntimeError("worker killed")
            return await original(db, snapshot, pairs)

        monkeypatch.setattr(placement_allocator, "run_placement_batch", crash_on_second_batch)
        with pytest.raises(RuntimeError):
            await run_bulk_for_active_year(db_session, target_capacity=30)
        run_id = (await db_session.execute(select(AllocationRun.id))).scalar_one()

        saved = await get_allocation_run(db_session, run_id)
        assert saved["status"] == AllocationRunStatus.RUNNING.value
        assert saved["counters"]["sections_created"] == 2
        assert saved["counters"]["inserted"] == 20

        monkeypatch.setattr(placement_allocator, "run_placement_batch", original)
        result = await run_bulk_for_active_year(db_session, resume_run_id=run_id, target_capacity=30)

        assert result.run_id == run_id
        assert result.sections_created == 2
        assert result.courses_touched == 1
        assert result.buckets_touched == 1
        assert result.inserted == 45
        assert result.failed == 0
        assert len(await enrollment_rows(db_session, course)) == 45
        assert len(await section_rows(db_session, course)) == 2
        run = await get_allocation_run(db_session, run_id)
        assert run["status"] == AllocationRunStatus.COMPLETED.value
        assert run["counters"]["sections_created"] == 2
