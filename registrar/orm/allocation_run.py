"""
registrar/orm/allocation_run.py
Progress record of a bulk allocation run.

The cursor is rewritten after every committed batch so an interrupted run
can be resumed from its last commit boundary.
"""
from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Enum as SQLEnum

from registrar.core.db_types import PortableJSON
from registrar.orm.base import TimestampedModel


class AllocationRunStatus(str, PyEnum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class AllocationRun(TimestampedModel):
    __tablename__ = "allocation_runs"

    run_type = Column(String(50), nullable=False, default="bulk_active_year")
    school_year_id = Column(Integer, ForeignKey("school_years.id"), nullable=False, index=True)
    semester = Column(Integer, nullable=False)
    status = Column(
        SQLEnum(AllocationRunStatus, values_callable=lambda e: [m.value for m in e]),
        default=AllocationRunStatus.RUNNING,
        nullable=False,
        index=True
    )
    counters = Column(PortableJSON, nullable=False, default=dict)
    # {"done": [[program, year, semester], ...], "bucket": [...] | None, "last_student_id": int}
    cursor = Column(PortableJSON, nullable=False, default=dict)
    last_error = Column(Text, nullable=True)
    started_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    finished_at = Column(DateTime, nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "school_year_id": self.school_year_id,
            "semester": self.semester,
            "status": self.status.value if self.status else None,
            "counters": dict(self.counters or {}),
            "cursor": dict(self.cursor or {}),
            "last_error": self.last_error,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }
