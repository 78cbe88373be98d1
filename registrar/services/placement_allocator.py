"""
Placement Allocator

Assigns (student, course) pairs to sections of the course.

Selection rule: among sections with room, the one with the most remaining
capacity wins; ties go to the lower occupancy, then to the lower code. This
spreads a cohort evenly (45 students over two sections of 30 end up 23/22,
not 30/15).

Occupancy is simulated in memory for the whole run: a reservation bumps the
in-memory count at once so the next student sees it. The cached
``sections.enrolled_count`` is then written as one relative UPDATE per
section per committed batch, never as read-modify-write.

Enrollment upsert:
- no enrollment yet             -> insert it (sectioned if a seat was found)
- enrollment without a section  -> attach, only if still unsectioned at UPDATE time
- enrollment with a section     -> skipped
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import select, insert, update, func, and_, exists, literal
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from registrar.exceptions import AllocationTransactionError
from registrar.orm.enrollment import Enrollment, EnrollmentStatus
from registrar.orm.section import Section, SectionStatus
from registrar.schemas.allocation import AllocationCounters

logger = logging.getLogger(__name__)


class PlacementOutcome(str, Enum):
    INSERTED = "inserted"
    UPDATED = "updated"
    SKIPPED = "skipped"
    UNSECTIONED = "unsectioned"


@dataclass
class SectionSlot:
    """In-memory view of one section during a run."""
    section_id: int
    course_id: int
    code: str
    capacity: int
    occupancy: int

    @property
    def remaining(self) -> int:
        return self.capacity - self.occupancy

    @property
    def has_room(self) -> bool:
        return self.occupancy < self.capacity


def choose_section(slots: Sequence[SectionSlot]) -> Optional[SectionSlot]:
    """
    Pure function: the slot that should take the next student, or None.

    Order: largest remaining capacity, then lowest occupancy, then code, then id.
    """
    candidates = [slot for slot in slots if slot.has_room]
    if not candidates:
        return None
    return min(
        candidates,
        key=lambda s: (-s.remaining, s.occupancy, s.code, s.section_id)
    )


class OccupancySnapshot:
    """
    Running occupancy of the active sections of a set of courses.

    Reservations are tracked as pending deltas until the surrounding batch
    commits; a rolled back batch gives its seats back.
    """

    def __init__(self, school_year_id: int):
        self.school_year_id = school_year_id
        self._slots: Dict[int, List[SectionSlot]] = {}
        self._by_id: Dict[int, SectionSlot] = {}
        self._pending: Dict[int, int] = {}

    def __contains__(self, course_id: int) -> bool:
        return course_id in self._slots

    def slots(self, course_id: int) -> List[SectionSlot]:
        return list(self._slots.get(course_id, []))

    def add_slots(self, slots: Iterable[SectionSlot]) -> None:
        for slot in slots:
            self._slots.setdefault(slot.course_id, []).append(slot)
            self._by_id[slot.section_id] = slot

    async def load(self, db: AsyncSession, course_ids: Iterable[int]) -> "OccupancySnapshot":
        """
        Load the courses not seen yet. Occupancy is the live count of
        enrollments of this school year, not the cached enrolled_count.
        """
        missing = sorted({cid for cid in course_ids if cid not in self._slots})
        if not missing:
            return self

        occupancy = (
            select(Enrollment.section_id, func.count(Enrollment.id).label("occ"))
            .where(
                Enrollment.school_year_id == self.school_year_id,
                Enrollment.section_id.is_not(None),
            )
            .group_by(Enrollment.section_id)
            .subquery()
        )
        result = await db.execute(
            select(
                Section.id, Section.course_id, Section.section_code, Section.capacity,
                func.coalesce(occupancy.c.occ, 0)
            )
            .outerjoin(occupancy, occupancy.c.section_id == Section.id)
            .where(
                Section.course_id.in_(missing),
                Section.status == SectionStatus.ACTIVE,
            )
            .order_by(Section.course_id, Section.section_code, Section.id)
        )
        for course_id in missing:
            self._slots[course_id] = []
        self.add_slots(
            SectionSlot(
                section_id=row[0], course_id=row[1], code=str(row[2]),
                capacity=int(row[3]), occupancy=int(row[4])
            )
            for row in result.all()
        )
        return self

    def reserve(self, course_id: int) -> Optional[SectionSlot]:
        slot = choose_section(self._slots.get(course_id, []))
        if slot is not None:
            slot.occupancy += 1
            self._pending[slot.section_id] = self._pending.get(slot.section_id, 0) + 1
        return slot

    def release(self, slot: SectionSlot) -> None:
        slot.occupancy -= 1
        self._pending[slot.section_id] = self._pending.get(slot.section_id, 0) - 1

    async def flush_counts(self, db: AsyncSession) -> None:
        """One relative UPDATE per section with a non-zero pending delta."""
        for section_id, delta in sorted(self._pending.items()):
            if delta == 0:
                continue
            await db.execute(
                update(Section)
                .where(Section.id == section_id)
                .values(enrolled_count=Section.enrolled_count + delta)
            )

    def mark_committed(self) -> None:
        self._pending.clear()

    def discard_pending(self) -> None:
        for section_id, delta in self._pending.items():
            slot = self._by_id.get(section_id)
            if slot is not None:
                slot.occupancy -= delta
        self._pending.clear()


# =============================================================================
# Single placement
# =============================================================================

def _dialect_name(db: AsyncSession) -> str:
    return db.get_bind().dialect.name


async def insert_enrollment_if_absent(
    db: AsyncSession,
    student_id: int,
    course_id: int,
    school_year_id: int,
    section_id: Optional[int],
) -> bool:
    """
    Insert an enrollment unless one already exists for the key.

    Returns True when a row was inserted. A concurrent writer that got there
    first is a no-op, not an error.
    """
    values = dict(
        student_id=student_id,
        course_id=course_id,
        school_year_id=school_year_id,
        section_id=section_id,
        status=EnrollmentStatus.ENROLLED,
    )
    dialect = _dialect_name(db)
    if dialect in ("postgresql", "sqlite"):
        if dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert as dialect_insert
        else:
            from sqlalchemy.dialects.sqlite import insert as dialect_insert
        stmt = (
            dialect_insert(Enrollment)
            .values(**values)
            .on_conflict_do_nothing(index_elements=["student_id", "course_id", "school_year_id"])
        )
        result = await db.execute(stmt)
        return (result.rowcount or 0) > 0

    # Other backends: INSERT ... SELECT ... WHERE NOT EXISTS
    already = exists().where(
        Enrollment.student_id == student_id,
        Enrollment.course_id == course_id,
        Enrollment.school_year_id == school_year_id,
    )
    stmt = insert(Enrollment).from_select(
        list(values.keys()),
        select(*[literal(v) for v in values.values()]).where(~already)
    )
    result = await db.execute(stmt)
    return (result.rowcount or 0) > 0


async def attach_section(db: AsyncSession, enrollment_id: int, section_id: int) -> bool:
    """Set the section of an unsectioned enrollment. False if it got one meanwhile."""
    result = await db.execute(
        update(Enrollment)
        .where(and_(Enrollment.id == enrollment_id, Enrollment.section_id.is_(None)))
        .values(section_id=section_id)
    )
    return (result.rowcount or 0) == 1


async def place_enrollment(
    db: AsyncSession,
    snapshot: OccupancySnapshot,
    student_id: int,
    course_id: int,
) -> PlacementOutcome:
    """Place one (student, course) pair for the snapshot's school year. Does not commit."""
    school_year_id = snapshot.school_year_id
    existing = (await db.execute(
        select(Enrollment.id, Enrollment.section_id)
        .where(
            Enrollment.student_id == student_id,
            Enrollment.course_id == course_id,
            Enrollment.school_year_id == school_year_id,
        )
        .limit(1)
    )).one_or_none()

    if existing is not None and existing.section_id is not None:
        return PlacementOutcome.SKIPPED

    slot = snapshot.reserve(course_id)

    if existing is not None:
        if slot is None:
            return PlacementOutcome.UNSECTIONED
        if await attach_section(db, existing.id, slot.section_id):
            return PlacementOutcome.UPDATED
        snapshot.release(slot)
        return PlacementOutcome.SKIPPED

    section_id = slot.section_id if slot is not None else None
    inserted = await insert_enrollment_if_absent(db, student_id, course_id, school_year_id, section_id)
    if not inserted:
        if slot is not None:
            snapshot.release(slot)
        return PlacementOutcome.SKIPPED
    if slot is None:
        logger.debug(f"[PLACEMENT] student={student_id} course={course_id} left unsectioned")
        return PlacementOutcome.UNSECTIONED
    return PlacementOutcome.INSERTED


# =============================================================================
# Batches
# =============================================================================

def _count(counters: AllocationCounters, outcome: PlacementOutcome) -> None:
    setattr(counters, outcome.value, getattr(counters, outcome.value) + 1)


async def run_placement_batch(
    db: AsyncSession,
    snapshot: OccupancySnapshot,
    pairs: Sequence[Tuple[int, int]],
) -> AllocationCounters:
    """
    Place a batch of (student_id, course_id) pairs and commit once.

    Raises:
        AllocationTransactionError: The batch was rolled back; its seats are
            returned to the snapshot and its counters are discarded
    """
    counters = AllocationCounters()
    try:
        for student_id, course_id in pairs:
            _count(counters, await place_enrollment(db, snapshot, student_id, course_id))
        await snapshot.flush_counts(db)
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        snapshot.discard_pending()
        logger.error(f"[PLACEMENT] batch of {len(pairs)} pair(s) rolled back: {e}")
        raise AllocationTransactionError(
            "Placement batch failed",
            details={"pairs": len(pairs)}
        ) from e
    snapshot.mark_committed()
    return counters


Checkpoint = Callable[[int, AllocationCounters], Awaitable[None]]


async def allocate_students(
    db: AsyncSession,
    snapshot: OccupancySnapshot,
    student_ids: Sequence[int],
    course_ids: Sequence[int],
    batch_size: int,
    checkpoint: Optional[Checkpoint] = None,
) -> AllocationCounters:
    """
    Place every student into every course, committing in batches.

    Batches hold whole students (at least one), so the last student id of a
    committed batch is a valid resume cursor. ``checkpoint`` is awaited after
    each committed batch with that id and the batch counters.
    """
    totals = AllocationCounters()
    if not student_ids or not course_ids:
        return totals

    await snapshot.load(db, course_ids)
    students_per_batch = max(1, batch_size // max(1, len(course_ids)))

    for start in range(0, len(student_ids), students_per_batch):
        chunk = student_ids[start:start + students_per_batch]
        pairs = [(sid, cid) for sid in chunk for cid in course_ids]
        try:
            batch = await run_placement_batch(db, snapshot, pairs)
        except AllocationTransactionError:
            totals.failed += 1
            continue
        totals.merge(batch)
        if checkpoint is not None:
            await checkpoint(chunk[-1], batch)

    logger.info(
        f"[PLACEMENT] sy={snapshot.school_year_id} students={len(student_ids)} courses={len(course_ids)} "
        f"inserted={totals.inserted} updated={totals.updated} skipped={totals.skipped} "
        f"unsectioned={totals.unsectioned} failed_batches={totals.failed}"
    )
    return totals
