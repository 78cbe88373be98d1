"""
CLI tests: argument parsing and the section command handlers.
"""
import json

import pytest

from registrar.cli import create_parser, main
from registrar.cli.section_commands import SectionCommand
from registrar.tests.helpers import section_rows


def parse(*argv):
    return create_parser().parse_args(list(argv))


class TestParser:

    def test_allocate_arguments(self):
        args = parse("sections", "allocate", "--program", "3", "--year", "2", "--semester", "1")

        assert args.command == "sections"
        assert args.section_action == "allocate"
        assert (args.program, args.year, args.semester) == (3, 2, 1)
        assert args.capacity is None

    def test_reset_defaults_mean_all(self):
        args = parse("sections", "reset")

        assert (args.program, args.year, args.semester) == (0, 0, 0)
        assert args.confirm is False
        assert args.policy is None

    def test_reset_policy_choices(self):
        with pytest.raises(SystemExit):
            parse("sections", "reset", "--policy", "cascade")

    def test_global_flags(self):
        args = parse("--dry-run", "--log-level", "DEBUG", "sections", "dedupe")

        assert args.dry_run is True
        assert args.log_level == "DEBUG"

    def test_no_command_prints_help(self, capsys):
        assert main([]) == 1
        assert "usage" in capsys.readouterr().out


class TestSectionCommand:

    @pytest.mark.asyncio
    async def test_provision(self, session_factory, factory, capsys):
        program = await factory.program()
        course = await factory.course(program)
        await factory.students(program, count=31)

        code = await SectionCommand(session_factory=session_factory).run_async(
            parse("sections", "provision", "--course", str(course))
        )

        assert code == 0
        out = capsys.readouterr().out
        assert '"created": 2' in out

    @pytest.mark.asyncio
    async def test_allocate_error_is_reported(self, session_factory, factory, capsys):
        code = await SectionCommand(session_factory=session_factory).run_async(
            parse("sections", "allocate", "--program", "1", "--year", "1")
        )

        assert code == 1
        assert "MISSING_BUCKET_SELECTOR" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_reset_without_confirm_deletes_nothing(self, db_session, session_factory, factory, capsys):
        program = await factory.program()
        course = await factory.course(program)
        await factory.section(course, "A")

        code = await SectionCommand(session_factory=session_factory).run_async(
            parse("sections", "reset", "--program", str(program))
        )

        assert code == 0
        assert "--confirm" in capsys.readouterr().out
        assert len(await section_rows(db_session, course)) == 1

    @pytest.mark.asyncio
    async def test_reset_with_confirm(self, db_session, session_factory, factory, capsys):
        program = await factory.program()
        course = await factory.course(program)
        await factory.section(course, "A")

        code = await SectionCommand(session_factory=session_factory).run_async(
            parse("sections", "reset", "--program", str(program), "--confirm")
        )

        assert code == 0
        assert await section_rows(db_session, course) == []

    @pytest.mark.asyncio
    async def test_dry_run_reset_ignores_confirm(self, db_session, session_factory, factory, capsys):
        program = await factory.program()
        course = await factory.course(program)
        await factory.section(course, "A")

        code = await SectionCommand(dry_run=True, session_factory=session_factory).run_async(
            parse("sections", "reset", "--program", str(program), "--confirm")
        )

        assert code == 0
        assert "[DRY RUN]" in capsys.readouterr().out
        assert len(await section_rows(db_session, course)) == 1

    @pytest.mark.asyncio
    async def test_status_warns_about_over_capacity(self, session_factory, factory, capsys):
        program = await factory.program()
        course = await factory.course(program)
        school_year = await factory.school_year(semester=1)
        section = await factory.section(course, "A", capacity=1)
        for student in await factory.students(program, count=2):
            await factory.enrollment(student, course, school_year, section)

        code = await SectionCommand(session_factory=session_factory).run_async(
            parse("sections", "status", "--course", str(course))
        )

        out = capsys.readouterr().out
        assert code == 0
        assert "WARNING: 1 section(s) over capacity" in out
        entries = json.loads(out[:out.index("WARNING")])
        assert entries[0]["occupancy"] == 2

    def test_dry_run_skips_writes(self, capsys):
        code = SectionCommand(dry_run=True).execute(parse("sections", "bulk"))

        assert code == 0
        assert "[DRY RUN] Would run sections bulk" in capsys.readouterr().out
