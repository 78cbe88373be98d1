"""
registrar/orm/enrollment.py
Enrollment of a student in a course for a school year.

One row per (student, course, school year). The section reference stays
NULL ("unsectioned") until the placement allocator finds room.
"""
from enum import Enum as PyEnum

from sqlalchemy import (
    Column, Integer, ForeignKey, Enum as SQLEnum, UniqueConstraint, Index
)

from registrar.orm.base import TimestampedModel


class EnrollmentStatus(str, PyEnum):
    ENROLLED = "enrolled"
    DROPPED = "dropped"
    COMPLETED = "completed"


class Enrollment(TimestampedModel):
    __tablename__ = "enrollments"

    student_id = Column(
        Integer,
        ForeignKey("students.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    course_id = Column(
        Integer,
        ForeignKey("courses.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    school_year_id = Column(
        Integer,
        ForeignKey("school_years.id"),
        nullable=False
    )
    section_id = Column(
        Integer,
        ForeignKey("sections.id"),
        nullable=True,
        index=True
    )
    status = Column(
        SQLEnum(EnrollmentStatus, values_callable=lambda e: [m.value for m in e]),
        default=EnrollmentStatus.ENROLLED,
        nullable=False
    )

    __table_args__ = (
        UniqueConstraint(
            "student_id", "course_id", "school_year_id",
            name="uq_enrollment_student_course_year"
        ),
        Index("ix_enrollments_course_year", "course_id", "school_year_id"),
    )

    def __repr__(self):
        return (
            f"<Enrollment(id={self.id}, student={self.student_id}, course={self.course_id}, "
            f"sy={self.school_year_id}, section={self.section_id})>"
        )
