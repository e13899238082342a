"""
schemas.py - Declared Input Table Schemas

Each input table is checked against a declared schema before it reaches a
join. Source column names come from config; downstream stages only ever see
the canonical names defined here.
"""

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Mapping, Optional

import geopandas as gpd
import pandas as pd
from loguru import logger

from .errors import SchemaMismatch

# Canonical column names
WMU_RAW = "wmu_raw"
WMU_CODE = "wmu_code"
WMU_NAME = "wmu_name"
CELL_ID = "cell_id"
DENSITY = "density"
SURVEY_YEAR = "survey_year"
ABUNDANCE = "abundance"
ABUNDANCE_CLASS = "abundance_class"
SPECIES = "species"
COUNT = "count"
SURVEY_DATE = "survey_date"
OBSERVATION_ID = "observation_id"


@dataclass(frozen=True)
class TableSchema:
    """Canonical column -> source column mapping for one input table."""

    name: str
    columns: Mapping[str, str]
    geometry: bool = False
    optional: FrozenSet[str] = frozenset()
    numeric: Mapping[str, str] = field(default_factory=dict)


DEFAULT_COLUMNS: Dict[str, Dict[str, str]] = {
    "units": {WMU_RAW: "WMUNIT_COD", WMU_NAME: "WMUNIT_NAM"},
    "grid": {CELL_ID: "GRID_ID", WMU_RAW: "WMUNIT_COD"},
    "observations": {
        SPECIES: "species",
        COUNT: "count",
        WMU_RAW: "wmu",
        SURVEY_DATE: "survey_date",
    },
    "density": {WMU_RAW: "wmu", DENSITY: "density", SURVEY_YEAR: "survey_year"},
    "predictions": {CELL_ID: "GRID_ID", ABUNDANCE: "predicted_abundance"},
}


def build_schemas(columns: Optional[Mapping[str, Mapping[str, str]]] = None) -> Dict[str, TableSchema]:
    """Build the five input schemas, overlaying configured source names on defaults."""
    merged = {table: dict(mapping) for table, mapping in DEFAULT_COLUMNS.items()}
    for table, mapping in (columns or {}).items():
        if table not in merged:
            raise SchemaMismatch(f"Unknown table '{table}' in column configuration")
        merged[table].update({k: v for k, v in mapping.items() if k in merged[table]})

    return {
        "units": TableSchema("units", merged["units"], geometry=True),
        "grid": TableSchema("grid", merged["grid"], geometry=True, optional=frozenset({WMU_RAW})),
        "observations": TableSchema(
            "observations",
            merged["observations"],
            geometry=True,
            optional=frozenset({SURVEY_DATE}),
            numeric={COUNT: "Int64"},
        ),
        "density": TableSchema(
            "density",
            merged["density"],
            optional=frozenset({SURVEY_YEAR}),
            numeric={DENSITY: "Float64", SURVEY_YEAR: "Int64"},
        ),
        "predictions": TableSchema(
            "predictions", merged["predictions"], numeric={ABUNDANCE: "Float64"}
        ),
    }


def apply_schema(frame: pd.DataFrame, schema: TableSchema) -> pd.DataFrame:
    """Validate frame against schema and return a copy with canonical columns only.

    Optional columns that are absent are added as all-missing. Numeric columns
    are coerced to nullable dtypes; unparseable values become missing (never 0).
    """
    logger.debug(f"  📋 Applying '{schema.name}' schema...")

    missing = [
        source
        for canonical, source in schema.columns.items()
        if source not in frame.columns and canonical not in schema.optional
    ]
    if missing:
        raise SchemaMismatch(
            f"Table '{schema.name}' is missing columns {missing}; "
            f"available: {[c for c in frame.columns if c != 'geometry']}"
        )

    if schema.geometry and not isinstance(frame, gpd.GeoDataFrame):
        raise SchemaMismatch(f"Table '{schema.name}' must carry geometry")

    result = pd.DataFrame(index=frame.index)
    for canonical, source in schema.columns.items():
        if source in frame.columns:
            result[canonical] = frame[source]
        else:
            logger.debug(f"     Optional column '{source}' absent from '{schema.name}'")
            result[canonical] = pd.Series(pd.NA, index=frame.index, dtype="object")

    for column, dtype in schema.numeric.items():
        before = result[column].notna().sum()
        result[column] = pd.to_numeric(result[column], errors="coerce")
        if dtype == "Int64":
            # Fractional values cannot be cast to Int64
            fractional = result[column].notna() & (result[column] % 1 != 0)
            if fractional.any():
                raise SchemaMismatch(
                    f"Column '{schema.columns[column]}' in '{schema.name}' has non-integer values"
                )
        result[column] = result[column].astype(dtype)
        lost = before - result[column].notna().sum()
        if lost:
            logger.warning(
                f"  ⚠️ {lost:,} unparseable values in '{schema.name}.{schema.columns[column]}' "
                "treated as missing"
            )

    if schema.geometry:
        result = gpd.GeoDataFrame(result, geometry=frame.geometry.values, crs=frame.crs)

    return result
