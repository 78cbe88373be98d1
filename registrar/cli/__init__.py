"""
registrar command line

    python -m registrar.cli [--dry-run] [--log-level LEVEL] sections <action> [options]

Section actions:
    provision   create missing sections for one course
    allocate    top up and place one bucket (program, year, semester)
    bulk        provision and place every bucket of the active school year
    rebalance   move excess enrollments out of over-full sections
    dedupe      collapse sections sharing a normalized code
    reset       delete sections under a filter (lists them unless --confirm)
    recount     rewrite cached enrolled counts from enrollment rows
    status      show sections with live occupancy

DATABASE_URL and the SECTION_* / ALLOCATION_* settings are read from the
environment or a local .env file.
"""
import sys
import argparse
import logging
from typing import List, Optional

from registrar.cli.section_commands import SectionCommand

COMMANDS = {
    "sections": SectionCommand,
}


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s"
    )


def _add_section_actions(subparsers) -> None:
    sections = subparsers.add_parser("sections", help="Section provisioning, placement and repairs")
    actions = sections.add_subparsers(dest="section_action")

    provision = actions.add_parser("provision", help="Create missing sections for a course")
    provision.add_argument("--course", "-c", type=int, required=True, help="Course ID")
    provision.add_argument("--capacity", type=int, help="Target capacity per section")

    allocate = actions.add_parser("allocate", help="Top up and place one bucket")
    allocate.add_argument("--program", "-p", type=int, help="Program ID")
    allocate.add_argument("--year", "-y", type=int, help="Year level")
    allocate.add_argument("--semester", "-s", type=int, help="Semester")
    allocate.add_argument("--capacity", type=int, help="Target capacity per section")

    bulk = actions.add_parser("bulk", help="Allocate every bucket of the active school year")
    bulk.add_argument("--resume", type=int, help="Resume an interrupted run by id")
    bulk.add_argument("--capacity", type=int, help="Target capacity per section")

    rebalance = actions.add_parser("rebalance", help="Relieve over-capacity sections")
    rebalance.add_argument("--school-year", type=int, help="School year ID (default: active)")
    rebalance.add_argument("--capacity", type=int, help="Target capacity per section")

    actions.add_parser("dedupe", help="Collapse duplicate section codes")

    reset = actions.add_parser("reset", help="Delete sections under a filter")
    reset.add_argument("--program", "-p", type=int, default=0, help="Program ID (0 = all)")
    reset.add_argument("--year", "-y", type=int, default=0, help="Year level (0 = all)")
    reset.add_argument("--semester", "-s", type=int, default=0, help="Semester (0 = all)")
    reset.add_argument("--policy", choices=["delete", "detach"], help="What happens to enrollments")
    reset.add_argument("--confirm", action="store_true", help="Actually delete (irreversible)")

    recount = actions.add_parser("recount", help="Rewrite cached enrolled counts")
    recount.add_argument("--school-year", type=int, help="Only sections used in this school year")

    status = actions.add_parser("status", help="Show sections with live occupancy")
    status.add_argument("--course", "-c", type=int, help="Course ID")
    status.add_argument("--school-year", type=int, help="Only count this school year")


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="registrar",
        description="Section capacity allocation and enrollment balancing",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s sections provision --course 12
  %(prog)s sections allocate --program 1 --year 2 --semester 1
  %(prog)s sections bulk --resume 7
  %(prog)s sections reset --program 3 --confirm
        """
    )
    parser.add_argument("--version", action="version", version="%(prog)s 1.0.0")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)"
    )
    parser.add_argument("--dry-run", action="store_true", help="Print what would run, write nothing")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")
    _add_section_actions(subparsers)
    return parser


def main(args: Optional[List[str]] = None) -> int:
    parser = create_parser()
    parsed = parser.parse_args(args)

    command = COMMANDS.get(parsed.command)
    if command is None:
        parser.print_help()
        return 1

    setup_logging(parsed.log_level)
    return command(dry_run=parsed.dry_run).execute(parsed)


if __name__ == "__main__":
    sys.exit(main())
