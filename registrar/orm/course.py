"""
registrar/orm/course.py
Course offered by a program for a given year level and semester.
"""
from sqlalchemy import Column, Integer, String, ForeignKey, Index
from sqlalchemy.orm import relationship

from registrar.orm.base import TimestampedModel


# Semester numbering: 1 and 2 are the regular terms, 3 is summer
FIRST_SEMESTER = 1
SECOND_SEMESTER = 2
SUMMER = 3
SEMESTERS = (FIRST_SEMESTER, SECOND_SEMESTER, SUMMER)


class Course(TimestampedModel):
    """
    A course belongs to one program and is taught in one (year level, semester).

    Sections are owned by the course: deleting a course deletes its sections.
    """
    __tablename__ = "courses"

    program_id = Column(
        Integer,
        ForeignKey("programs.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    course_code = Column(String(50), nullable=False)
    course_name = Column(String(200), nullable=False)
    year_level = Column(Integer, nullable=False)
    semester = Column(Integer, nullable=False)

    program = relationship("Program", back_populates="courses")
    sections = relationship(
        "Section",
        back_populates="course",
        cascade="all, delete-orphan",
        order_by="Section.section_code"
    )

    __table_args__ = (
        Index("ix_courses_bucket", "program_id", "year_level", "semester"),
    )

    def __repr__(self):
        return f"<Course(id={self.id}, code='{self.course_code}', y={self.year_level}, sem={self.semester})>"
