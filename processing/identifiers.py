"""
identifiers.py - Management Unit Code Normalization

Polygon sources carry a composite code field ("0515") whose leading digits are
a region prefix; the tabular sources carry the bare unit number (515, 515.0).
Every code is brought to the same bare string form here before any join.

Usage:
    from processing.identifiers import normalize_unit_code

    normalize_unit_code("0515")          # -> "515"
    canonical_code(515.0)                # -> "515"
"""

from typing import Any

import pandas as pd
from loguru import logger

from .errors import MalformedIdentifier

DEFAULT_PREFIX_WIDTH = 1


def normalize_unit_code(code: str, prefix_width: int = DEFAULT_PREFIX_WIDTH) -> str:
    """Strip the fixed-width prefix from a composite management-unit code.

    Args:
        code: Composite code string, e.g. "0515"
        prefix_width: Number of leading characters to drop

    Returns:
        The canonical unit code, e.g. "515"
    """
    if prefix_width < 0:
        raise ValueError(f"prefix_width must be non-negative, got {prefix_width}")

    if not isinstance(code, str):
        raise MalformedIdentifier(f"Composite unit code must be a string, got {code!r}")

    if len(code) < prefix_width + 1:
        raise MalformedIdentifier(
            f"Composite unit code {code!r} is shorter than prefix width {prefix_width} + 1"
        )

    return code[prefix_width:]


def canonical_code(value: Any) -> str:
    """Render an already-bare key (515, 515.0, " 515 ") as the string "515"."""
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        raise MalformedIdentifier("Code is missing")

    if isinstance(value, str):
        text = value.strip()
        if not text:
            raise MalformedIdentifier("Code is an empty string")
        try:
            number = float(text)
        except ValueError:
            # Non-numeric codes are taken as-is
            return text
    else:
        number = float(value)

    if not number.is_integer():
        raise MalformedIdentifier(f"Code {value!r} is not an integer")

    return str(int(number))


def normalize_code_column(
    frame: pd.DataFrame,
    source: str,
    target: str,
    prefix_width: int = DEFAULT_PREFIX_WIDTH,
    composite: bool = True,
) -> pd.DataFrame:
    """Return a copy of frame with source codes normalized into target.

    Null codes stay null so that a later fallback (or the join) can see them.
    """
    if source not in frame.columns:
        raise MalformedIdentifier(f"Code column '{source}' not found")

    def convert(value):
        if value is None or (not isinstance(value, str) and pd.isna(value)):
            return None
        if composite:
            return normalize_unit_code(value, prefix_width)
        return canonical_code(value)

    result = frame.copy()
    result[target] = frame[source].map(convert).astype("object")

    logger.debug(
        f"  🔑 Normalized {frame[source].notna().sum():,} codes "
        f"'{source}' → '{target}' ({'composite' if composite else 'canonical'})"
    )
    return result


def fill_missing_unit_codes(frame: pd.DataFrame, column: str, default: str) -> pd.DataFrame:
    """Substitute the documented default unit for null unit codes.

    Observation records with no unit code are attributed to the default unit.
    This is a data-owner business rule, so the substitution is always logged.
    """
    missing = frame[column].isna()
    result = frame.copy()

    if missing.any():
        logger.warning(
            f"  ⚠️ {int(missing.sum()):,} records have no unit code, substituting unit {default}"
        )
        result.loc[missing, column] = default

    return result
