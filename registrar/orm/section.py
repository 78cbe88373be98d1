"""
registrar/orm/section.py
Class sections of a course and their instructor assignments.

A section code is unique per course. Codes are compared in their
normalized form (trimmed, uppercase); legacy rows that only differ by
case or whitespace are collapsed by the dedupe repair.
"""
from enum import Enum as PyEnum

from sqlalchemy import (
    Column, Integer, String, ForeignKey, Enum as SQLEnum, UniqueConstraint
)
from sqlalchemy.orm import relationship

from registrar.orm.base import TimestampedModel


class SectionStatus(str, PyEnum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class Section(TimestampedModel):
    __tablename__ = "sections"

    course_id = Column(
        Integer,
        ForeignKey("courses.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    section_code = Column(String(50), nullable=False)
    section_name = Column(String(100), nullable=True)
    capacity = Column(Integer, nullable=False, default=30)
    # Cached occupancy. Only the placement allocator and the repair operations write it.
    enrolled_count = Column(Integer, nullable=False, default=0)
    status = Column(
        SQLEnum(SectionStatus, values_callable=lambda e: [m.value for m in e]),
        default=SectionStatus.ACTIVE,
        nullable=False
    )

    course = relationship("Course", back_populates="sections")
    instructor_assignments = relationship(
        "InstructorSection",
        back_populates="section",
        cascade="all, delete-orphan"
    )

    __table_args__ = (
        UniqueConstraint("course_id", "section_code", name="uq_section_course_code"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "course_id": self.course_id,
            "section_code": self.section_code,
            "capacity": self.capacity,
            "enrolled_count": self.enrolled_count,
            "status": self.status.value if self.status else None,
        }

    def __repr__(self):
        return f"<Section(id={self.id}, course={self.course_id}, code='{self.section_code}')>"


class InstructorSection(TimestampedModel):
    """Instructor assignment. Instructors live in the (external) user directory."""
    __tablename__ = "instructor_sections"

    instructor_id = Column(Integer, nullable=False, index=True)
    section_id = Column(
        Integer,
        ForeignKey("sections.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    section = relationship("Section", back_populates="instructor_assignments")

    __table_args__ = (
        UniqueConstraint("instructor_id", "section_id", name="uq_instructor_section"),
    )
