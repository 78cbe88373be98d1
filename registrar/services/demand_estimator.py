"""
Demand estimation: how many sections a course needs.
"""
import math
from typing import Optional

from registrar.config.settings import settings
from registrar.exceptions import AllocationInputError


def resolve_target_capacity(target_capacity: Optional[int] = None) -> int:
    """
    Capacity for new sections: the requested value, or SECTION_TARGET_CAPACITY
    when none was given.

    Raises:
        AllocationInputError: The requested capacity is zero or negative
    """
    if target_capacity is None:
        return settings.SECTION_TARGET_CAPACITY
    if target_capacity <= 0:
        raise AllocationInputError(
            f"Target capacity must be positive, got {target_capacity}",
            code="INVALID_CAPACITY",
            details={"target_capacity": target_capacity}
        )
    return target_capacity


def estimate_sections_needed(
    active_students: int,
    target_capacity: int = None,
    minimum: int = 0,
) -> int:
    """
    ceil(active_students / target_capacity), never below ``minimum``.

    ``minimum`` is the provisioning floor. Forced provisioning passes
    ``settings.SECTION_FORCED_MIN_SECTIONS`` so that an empty bucket still
    gets one reachable section; top-ups pass ``SECTION_TOPUP_MIN_SECTIONS``.

    Examples:
        estimate_sections_needed(61, 30) == 3
        estimate_sections_needed(0, 30) == 0
        estimate_sections_needed(0, 30, minimum=1) == 1
    """
    if target_capacity is None:
        target_capacity = settings.SECTION_TARGET_CAPACITY
    if target_capacity <= 0:
        raise ValueError(f"target_capacity must be positive, got {target_capacity}")
    if active_students < 0:
        raise ValueError(f"active_students must be >= 0, got {active_students}")

    needed = math.ceil(active_students / target_capacity)
    return max(needed, minimum)


def sections_to_create(sections_needed: int, existing_sections: int) -> int:
    """Top-up amount; existing sections are never removed here."""
    return max(0, sections_needed - existing_sections)
