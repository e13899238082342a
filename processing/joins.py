"""
joins.py - Attribute Joins and Region Filtering

Attribute tables (density per unit, predictions per cell) are joined onto
geometry tables by key equality. Joins are left-outer and many-to-one: every
base row survives, unmatched rows carry NA on joined fields, and a key that
occurs twice in the attribute source is an error rather than a fan-out.
"""

from typing import FrozenSet, Iterable, Optional, Sequence

import geopandas as gpd
import pandas as pd
from loguru import logger

from .errors import AmbiguousJoin, SchemaMismatch
from .geometry import ensure_common_crs


def require_unique(frame: pd.DataFrame, key: str, name: str = "table") -> None:
    """Raise AmbiguousJoin if any non-null key occurs more than once."""
    keys = frame[key].dropna()
    duplicated = keys[keys.duplicated(keep=False)]
    if len(duplicated) > 0:
        examples = sorted(set(map(str, duplicated)))[:5]
        raise AmbiguousJoin(
            f"{len(set(duplicated)):,} duplicate '{key}' values in {name}, e.g. {examples}"
        )


def left_join(
    base: pd.DataFrame,
    attributes: pd.DataFrame,
    key: str,
    columns: Optional[Sequence[str]] = None,
) -> pd.DataFrame:
    """
    Left-outer, many-to-one join of attribute columns onto base rows.

    Args:
        base: Rows to preserve (typically a GeoDataFrame)
        attributes: Attribute source, unique on key
        key: Join column present in both frames
        columns: Attribute columns to bring across (default: all but key)

    Returns:
        Copy of base, same index and order, with the joined columns added
    """
    if key not in base.columns:
        raise SchemaMismatch(f"Join key '{key}' not in base columns {list(base.columns)}")
    if key not in attributes.columns:
        raise SchemaMismatch(f"Join key '{key}' not in attribute columns {list(attributes.columns)}")

    if columns is None:
        columns = [c for c in attributes.columns if c != key]
    columns = list(columns)

    absent = [c for c in columns if c not in attributes.columns]
    if absent:
        raise SchemaMismatch(f"Attribute columns {absent} not found")

    clobbered = [c for c in columns if c in base.columns]
    if clobbered:
        raise SchemaMismatch(f"Joined columns {clobbered} already exist on base")

    require_unique(attributes, key, "attribute source")

    lookup = attributes.dropna(subset=[key]).set_index(key)[columns]
    matched = lookup.reindex(base[key])

    result = base.copy()
    for column in columns:
        result[column] = matched[column].array

    # Join coverage
    base_keys = set(base[key].dropna())
    attribute_keys = set(lookup.index)
    hits = base[key].isin(attribute_keys).sum()
    logger.debug(f"  🔗 Joined {columns} on '{key}': {hits:,}/{len(base):,} rows matched")
    unused = attribute_keys - base_keys
    if unused:
        logger.debug(f"     {len(unused):,} attribute keys had no base row, e.g. {sorted(unused)[:5]}")

    return result


def region_keys(frame: pd.DataFrame, key: str) -> FrozenSet:
    """Keys present in the data; these define the region of interest."""
    return frozenset(frame[key].dropna())


def filter_to_region(base: pd.DataFrame, allowed_keys: Iterable, key: str) -> pd.DataFrame:
    """Keep only rows whose key is in allowed_keys."""
    allowed = set(allowed_keys)
    result = base[base[key].isin(allowed)].copy()
    logger.debug(f"  🎯 Region filter on '{key}': {len(base):,} → {len(result):,} rows")
    return result


def assign_cells_to_units(
    cells: gpd.GeoDataFrame, units: gpd.GeoDataFrame, key: str
) -> gpd.GeoDataFrame:
    """
    Assign each grid cell the key of the unit containing its representative point.

    Cells outside every unit are dropped with a warning. A cell whose point
    falls in more than one unit means the unit polygons overlap, which makes
    membership ambiguous.
    """
    ensure_common_crs(cells, units)
    logger.info("📌 Assigning grid cells to management units by location...")

    points = gpd.GeoDataFrame(geometry=cells.geometry.representative_point(), crs=cells.crs)
    hits = gpd.sjoin(points, units[[key, "geometry"]], how="left", predicate="within")

    if hits.index.duplicated().any():
        count = hits.index[hits.index.duplicated()].nunique()
        raise AmbiguousJoin(f"{count:,} grid cells fall in more than one management unit")

    inside = hits[key].notna()
    if not inside.all():
        logger.warning(f"  ⚠️ {int((~inside).sum()):,} grid cells lie outside every unit, dropping")

    result = cells.loc[inside[inside].index].copy()
    result[key] = hits.loc[result.index, key].astype("object")
    logger.success(f"  ✅ Assigned {len(result):,} grid cells")
    return result
