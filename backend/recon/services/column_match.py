"""
Header lookup helpers exposed to transformation scripts.

Matching is case-insensitive and tolerant of surrounding whitespace and of
one name containing the other, so "Card Brand " in a sheet is found by a
script asking for "card brand".
"""
from __future__ import annotations

import re
from typing import Any, Iterable, Optional, Union


def normalize_column_name(name: Any) -> str:
    """
    Normalize a header for comparison.

    Lowercases, trims, and collapses inner whitespace runs.
    Examples:
        "Card Brand " -> "card brand"
        "  PAYMENT   TYPE" -> "payment type"
    """
    return re.sub(r"\s+", " ", str(name)).strip().lower()


def _names_match(column: str, candidate: str) -> bool:
    if not column or not candidate:
        return False
    return column == candidate or candidate in column or column in candidate


def find_column(
    row: Optional[Union[dict[str, Any], Iterable[str]]],
    candidate_names: Union[str, Iterable[str]],
) -> Optional[str]:
    """
    Return the first column of ``row`` matching one of ``candidate_names``.

    Precedence is candidate order first, then column order. Returns the
    column name exactly as it appears in the row, or None.
    """
    if not row:
        return None
    if isinstance(candidate_names, str):
        candidate_names = [candidate_names]

    columns = list(row.keys()) if isinstance(row, dict) else list(row)
    normalized = [(col, normalize_column_name(col)) for col in columns]

    for candidate in candidate_names:
        target = normalize_column_name(candidate)
        for original, norm in normalized:
            if _names_match(norm, target):
                return original
    return None
