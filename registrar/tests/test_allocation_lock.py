"""
Allocation lock tests.
"""
import asyncio

import pytest

from registrar.services.allocation_lock import (
    SECTIONS_KEY, advisory_key, allocation_lock, school_year_key,
)


class TestAdvisoryKey:

    def test_stable(self):
        assert advisory_key(school_year_key(3)) == advisory_key("school_year:3")

    def test_fits_signed_bigint(self):
        for key in (SECTIONS_KEY, school_year_key(1), school_year_key(2024)):
            assert -(2 ** 63) <= advisory_key(key) < 2 ** 63

    def test_distinct_keys(self):
        assert advisory_key(school_year_key(1)) != advisory_key(school_year_key(2))


class TestAllocationLock:

    @pytest.mark.asyncio
    async def test_same_key_runs_one_at_a_time(self, db_session):
        events = []

        async def run(name):
            async with allocation_lock(db_session, school_year_key(1)):
                events.append(f"{name}:start")
                await asyncio.sleep(0.01)
                events.append(f"{name}:end")

        await asyncio.gather(run("first"), run("second"))

        assert events == ["first:start", "first:end", "second:start", "second:end"]

    @pytest.mark.asyncio
    async def test_different_keys_do_not_block(self, db_session):
        inside = asyncio.Event()
        released = asyncio.Event()

        async def holder():
            async with allocation_lock(db_session, school_year_key(1)):
                inside.set()
                await released.wait()

        task = asyncio.create_task(holder())
        await inside.wait()

        async with allocation_lock(db_session, school_year_key(2)):
            acquired_other = True
        released.set()
        await task

        assert acquired_other

    @pytest.mark.asyncio
    async def test_released_after_error(self, db_session):
        with pytest.raises(RuntimeError):
            async with allocation_lock(db_session, SECTIONS_KEY):
                raise RuntimeError("boom")

        async with allocation_lock(db_session, SECTIONS_KEY):
            pass
