"""
Section code generation.

Codes follow spreadsheet-column lettering: 0 -> "A", 25 -> "Z", 26 -> "AA",
27 -> "AB", ... (bijective base 26, there is no zero digit).
"""
from typing import Iterable, Set

ALPHABET_SIZE = 26


def code_for_index(index: int) -> str:
    """
    Pure function: ordinal index to letter code.

    Raises:
        ValueError: If index is negative
    """
    if index < 0:
        raise ValueError(f"Section index must be >= 0, got {index}")

    letters = []
    n = index
    while n >= 0:
        letters.append(chr(ord("A") + n % ALPHABET_SIZE))
        n = n // ALPHABET_SIZE - 1
    return "".join(reversed(letters))


def normalize_section_code(code: str) -> str:
    """Canonical form used for uniqueness checks: trimmed and uppercase."""
    return (code or "").strip().upper()


def next_section_code(used_codes: Iterable[str], start_index: int = 0) -> str:
    """
    First code at or after ``start_index`` that is not already in use.

    Comparison is done on normalized codes, so " a" blocks "A".
    Terminates because only finitely many codes can be excluded.
    """
    used: Set[str] = {normalize_section_code(code) for code in used_codes}
    index = max(0, start_index)
    code = code_for_index(index)
    while code in used:
        index += 1
        code = code_for_index(index)
    return code
