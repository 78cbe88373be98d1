"""
registrar/orm/school_year.py
School year. Exactly one row is expected to be active at a time.
"""
from enum import Enum as PyEnum

from sqlalchemy import Column, Integer, String, Enum as SQLEnum, UniqueConstraint

from registrar.orm.base import TimestampedModel


class SchoolYearStatus(str, PyEnum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class SchoolYear(TimestampedModel):
    __tablename__ = "school_years"

    year = Column(String(20), nullable=False)  # "2025-2026"
    # Active semester of the year; NULL when an admin has not configured it yet
    semester = Column(Integer, nullable=True)
    status = Column(
        SQLEnum(SchoolYearStatus, values_callable=lambda e: [m.value for m in e]),
        default=SchoolYearStatus.INACTIVE,
        nullable=False,
        index=True
    )

    __table_args__ = (
        UniqueConstraint("year", "semester", name="uq_school_year_semester"),
    )

    def __repr__(self):
        return f"<SchoolYear(id={self.id}, year='{self.year}', sem={self.semester}, status={self.status})>"
