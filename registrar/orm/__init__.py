from .base import Base

from .program import Program
from .course import Course, FIRST_SEMESTER, SECOND_SEMESTER, SUMMER, SEMESTERS
from .student import Student, StudentStatus
from .school_year import SchoolYear, SchoolYearStatus
from .section import Section, SectionStatus, InstructorSection
from .enrollment import Enrollment, EnrollmentStatus
from .allocation_run import AllocationRun, AllocationRunStatus
