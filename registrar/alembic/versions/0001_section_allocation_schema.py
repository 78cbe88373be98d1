"""
Alembic migration: Section allocation schema

Creates programs, courses, students, school_years, sections,
instructor_sections, enrollments and allocation_runs with the uniqueness
constraints the allocation engine relies on:
- sections (course_id, section_code)
- enrollments (student_id, course_id, school_year_id)
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0001_section_allocation_schema"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


ACTIVE_INACTIVE = ("active", "inactive")


def upgrade():
    op.create_table(
        "programs",
        *_timestamps(),
        sa.Column("code", sa.String(20), nullable=False),
        sa.Column("name", sa.String(150), nullable=False),
    )
    op.create_index("ix_programs_code", "programs", ["code"], unique=True)

    op.create_table(
        "courses",
        *_timestamps(),
        sa.Column("program_id", sa.Integer(), sa.ForeignKey("programs.id", ondelete="CASCADE"), nullable=False),
        sa.Column("course_code", sa.String(50), nullable=False),
        sa.Column("course_name", sa.String(200), nullable=False),
        sa.Column("year_level", sa.Integer(), nullable=False),
        sa.Column("semester", sa.Integer(), nullable=False),
    )
    op.create_index("ix_courses_program_id", "courses", ["program_id"])
    op.create_index("ix_courses_bucket", "courses", ["program_id", "year_level", "semester"])

    op.create_table(
        "students",
        *_timestamps(),
        sa.Column("student_number", sa.String(50), nullable=True, unique=True),
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("last_name", sa.String(100), nullable=False),
        sa.Column("email", sa.String(150), nullable=False, unique=True),
        sa.Column("program_id", sa.Integer(), sa.ForeignKey("programs.id", ondelete="SET NULL"), nullable=True),
        sa.Column("year_level", sa.Integer(), nullable=True),
        sa.Column("status", sa.Enum(*ACTIVE_INACTIVE, name="studentstatus"), nullable=False),
    )
    op.create_index("ix_students_program_id", "students", ["program_id"])
    op.create_index("ix_students_roster", "students", ["program_id", "year_level", "status"])

    op.create_table(
        "school_years",
        *_timestamps(),
        sa.Column("year", sa.String(20), nullable=False),
        sa.Column("semester", sa.Integer(), nullable=True),
        sa.Column("status", sa.Enum(*ACTIVE_INACTIVE, name="schoolyearstatus"), nullable=False),
        sa.UniqueConstraint("year", "semester", name="uq_school_year_semester"),
    )
    op.create_index("ix_school_years_status", "school_years", ["status"])

    op.create_table(
        "sections",
        *_timestamps(),
        sa.Column("course_id", sa.Integer(), sa.ForeignKey("courses.id", ondelete="CASCADE"), nullable=False),
        sa.Column("section_code", sa.String(50), nullable=False),
        sa.Column("section_name", sa.String(100), nullable=True),
        sa.Column("capacity", sa.Integer(), nullable=False, server_default="30"),
        sa.Column("enrolled_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.Enum(*ACTIVE_INACTIVE, name="sectionstatus"), nullable=False),
        sa.UniqueConstraint("course_id", "section_code", name="uq_section_course_code"),
    )
    op.create_index("ix_sections_course_id", "sections", ["course_id"])

    op.create_table(
        "instructor_sections",
        *_timestamps(),
        sa.Column("instructor_id", sa.Integer(), nullable=False),
        sa.Column("section_id", sa.Integer(), sa.ForeignKey("sections.id", ondelete="CASCADE"), nullable=False),
        sa.UniqueConstraint("instructor_id", "section_id", name="uq_instructor_section"),
    )
    op.create_index("ix_instructor_sections_instructor_id", "instructor_sections", ["instructor_id"])
    op.create_index("ix_instructor_sections_section_id", "instructor_sections", ["section_id"])

    op.create_table(
        "enrollments",
        *_timestamps(),
        sa.Column("student_id", sa.Integer(), sa.ForeignKey("students.id", ondelete="CASCADE"), nullable=False),
        sa.Column("course_id", sa.Integer(), sa.ForeignKey("courses.id", ondelete="CASCADE"), nullable=False),
        sa.Column("school_year_id", sa.Integer(), sa.ForeignKey("school_years.id"), nullable=False),
        sa.Column("section_id", sa.Integer(), sa.ForeignKey("sections.id"), nullable=True),
        sa.Column(
            "status",
            sa.Enum("enrolled", "dropped", "completed", name="enrollmentstatus"),
            nullable=False
        ),
        sa.UniqueConstraint(
            "student_id", "course_id", "school_year_id",
            name="uq_enrollment_student_course_year"
        ),
    )
    op.create_index("ix_enrollments_student_id", "enrollments", ["student_id"])
    op.create_index("ix_enrollments_course_id", "enrollments", ["course_id"])
    op.create_index("ix_enrollments_section_id", "enrollments", ["section_id"])
    op.create_index("ix_enrollments_course_year", "enrollments", ["course_id", "school_year_id"])

    op.create_table(
        "allocation_runs",
        *_timestamps(),
        sa.Column("run_type", sa.String(50), nullable=False),
        sa.Column("school_year_id", sa.Integer(), sa.ForeignKey("school_years.id"), nullable=False),
        sa.Column("semester", sa.Integer(), nullable=False),
        sa.Column(
            "status",
            sa.Enum("running", "completed", "failed", name="allocationrunstatus"),
            nullable=False
        ),
        sa.Column("counters", sa.JSON(), nullable=False),
        sa.Column("cursor", sa.JSON(), nullable=False),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("started_at", sa.DateTime(), nullable=False),
        sa.Column("finished_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_allocation_runs_school_year_id", "allocation_runs", ["school_year_id"])
    op.create_index("ix_allocation_runs_status", "allocation_runs", ["status"])


def downgrade():
    op.drop_table("allocation_runs")
    op.drop_table("enrollments")
    op.drop_table("instructor_sections")
    op.drop_table("sections")
    op.drop_table("school_years")
    op.drop_table("students")
    op.drop_table("courses")
    op.drop_table("programs")
    sa.Enum(name="allocationrunstatus").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="enrollmentstatus").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="sectionstatus").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="schoolyearstatus").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="studentstatus").drop(op.get_bind(), checkfirst=True)
