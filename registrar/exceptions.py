"""
registrar/exceptions.py
Typed exceptions raised by the allocation engine

Taxonomy:
- AllocationInputError: the request itself is unusable (missing bucket
  selector, no active school year). Raised before any write.
- SectionConflictError: a uniqueness constraint fired inside a unit of work.
  Always recovered by the caller that owns the unit.
- AllocationTransactionError: the database failed a unit of work
  (deadlock, lost connection). Fatal for that unit only.

Running out of section capacity is not an exception; it is reported through
the ``unsectioned`` counter.
"""
from typing import Any, Dict, Optional


class AllocationError(Exception):
    """Base exception for the allocation engine"""
    status_code: int = 500
    code: str = "ALLOCATION_ERROR"

    def __init__(self, message: str, code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        self.message = message
        if code:
            self.code = code
        self.details = details
        super().__init__(self.message)


class AllocationInputError(AllocationError):
    """
    Raised when a request cannot be served as given.

    Examples:
    - Program, year level or semester missing from a bucket request
    - No active school year
    - Active school year has no semester configured
    """
    status_code = 400
    code = "INVALID_INPUT"


class CourseNotFoundError(AllocationError):
    status_code = 404
    code = "COURSE_NOT_FOUND"

    def __init__(self, course_id: int):
        super().__init__(f"Course with id '{course_id}' not found", details={"course_id": course_id})


class StudentNotFoundError(AllocationError):
    status_code = 404
    code = "STUDENT_NOT_FOUND"

    def __init__(self, student_id: int):
        super().__init__(f"Student with id '{student_id}' not found", details={"student_id": student_id})


class SectionConflictError(AllocationError):
    """
    Raised when another writer created the same section code or enrollment
    key first. The unit of work is rolled back and the run moves on.
    """
    status_code = 409
    code = "SECTION_CONFLICT"


class AllocationTransactionError(AllocationError):
    """Raised when the database fails a unit of work."""
    status_code = 500
    code = "TRANSACTION_FAILED"
