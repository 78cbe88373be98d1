"""
Section CLI Commands

Section operations: provision, allocate, bulk, rebalance, dedupe, reset,
recount, status
"""
import asyncio
import json
import logging
from typing import Optional

from registrar.exceptions import AllocationError
from registrar.schemas.allocation import ResetFilter, ResetPolicy

logger = logging.getLogger(__name__)


class SectionCommand:
    """Section CLI command handler."""

    def __init__(self, dry_run: bool = False, session_factory=None):
        self.dry_run = dry_run
        self._session_factory = session_factory

    def _sessions(self):
        if self._session_factory is None:
            from registrar.database import AsyncSessionLocal
            self._session_factory = AsyncSessionLocal
        return self._session_factory

    def execute(self, args) -> int:
        """Execute section command."""
        handler = getattr(self, f"_{args.section_action}", None) if args.section_action else None
        if handler is None:
            print("Error: Unknown section action")
            return 1

        if self.dry_run and args.section_action not in ("reset", "status"):
            print(f"[DRY RUN] Would run sections {args.section_action}")
            return 0

        try:
            return asyncio.run(self._run(handler, args))
        except AllocationError as e:
            print(f"Error [{e.code}]: {e.message}")
            return 1

    async def run_async(self, args) -> int:
        """Same as execute, for callers already inside an event loop."""
        handler = getattr(self, f"_{args.section_action}")
        try:
            return await self._run(handler, args)
        except AllocationError as e:
            print(f"Error [{e.code}]: {e.message}")
            return 1

    async def _run(self, handler, args) -> int:
        async with self._sessions()() as db:
            return await handler(db, args)

    @staticmethod
    def _print(result) -> None:
        if isinstance(result, list):
            print(json.dumps([item.model_dump() for item in result], indent=2))
        else:
            print(result.model_dump_json(indent=2))

    async def _provision(self, db, args) -> int:
        from registrar.services.section_provisioner import provision_sections

        print(f"=== Provision sections for course {args.course} ===")
        self._print(await provision_sections(db, args.course, args.capacity))
        return 0

    async def _allocate(self, db, args) -> int:
        from registrar.services.bulk_orchestrator import allocate_bucket

        print(f"=== Allocate bucket program={args.program} year={args.year} semester={args.semester} ===")
        self._print(await allocate_bucket(db, args.program, args.year, args.semester, args.capacity))
        return 0

    async def _bulk(self, db, args) -> int:
        from registrar.services.bulk_orchestrator import run_bulk_for_active_year

        print("=== Bulk allocation for the active school year ===")
        result = await run_bulk_for_active_year(db, resume_run_id=args.resume, target_capacity=args.capacity)
        self._print(result)
        return 0 if result.failed == 0 else 2

    async def _rebalance(self, db, args) -> int:
        from registrar.services.section_repair_service import rebalance_overcapacity

        print("=== Rebalance over-capacity sections ===")
        result = await rebalance_overcapacity(db, args.school_year, args.capacity)
        self._print(result)
        return 0 if result.failed == 0 else 2

    async def _dedupe(self, db, args) -> int:
        from registrar.services.section_repair_service import dedupe_sections

        print("=== Dedupe sections ===")
        result = await dedupe_sections(db)
        self._print(result)
        return 0 if result.failed == 0 else 2

    async def _reset(self, db, args) -> int:
        from registrar.services.section_repair_service import (
            matching_section_ids, reset_sections, section_status
        )

        section_filter = ResetFilter(program_id=args.program, year_level=args.year, semester=args.semester)
        if self.dry_run or not args.confirm:
            ids = await matching_section_ids(db, section_filter)
            print(f"[DRY RUN] {len(ids)} section(s) match {section_filter.model_dump()}")
            self._print(await section_status(db, section_ids=ids))
            if not args.confirm:
                print("Re-run with --confirm to delete them. This cannot be undone.")
            return 0

        policy: Optional[ResetPolicy] = ResetPolicy(args.policy) if args.policy else None
        print("=== Reset sections ===")
        self._print(await reset_sections(db, section_filter, policy))
        return 0

    async def _recount(self, db, args) -> int:
        from registrar.services.section_repair_service import recount_occupancy

        print("=== Recount section occupancy ===")
        self._print(await recount_occupancy(db, args.school_year))
        return 0

    async def _status(self, db, args) -> int:
        from registrar.services.section_repair_service import section_status

        entries = await section_status(db, course_id=args.course, school_year_id=args.school_year)
        self._print(entries)
        over = [entry for entry in entries if entry.over_capacity]
        if over:
            print(f"WARNING: {len(over)} section(s) over capacity")
        return 0
