"""
registrar/orm/student.py
Student roster entry. Only active students count as demand.
"""
from enum import Enum as PyEnum

from sqlalchemy import Column, Integer, String, ForeignKey, Enum as SQLEnum, Index

from registrar.orm.base import TimestampedModel


class StudentStatus(str, PyEnum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class Student(TimestampedModel):
    __tablename__ = "students"

    student_number = Column(String(50), nullable=True, unique=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String(150), nullable=False, unique=True)
    program_id = Column(
        Integer,
        ForeignKey("programs.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    year_level = Column(Integer, nullable=True)
    status = Column(
        SQLEnum(StudentStatus, values_callable=lambda e: [m.value for m in e]),
        default=StudentStatus.ACTIVE,
        nullable=False
    )

    __table_args__ = (
        Index("ix_students_roster", "program_id", "year_level", "status"),
    )

    def __repr__(self):
        return f"<Student(id={self.id}, program={self.program_id}, year={self.year_level})>"
