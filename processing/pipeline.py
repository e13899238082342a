"""
pipeline.py - Moose Map Layer Pipeline

Runs every stage once, in order, over fully loaded inputs and returns the four
output layers. Each stage takes frames and returns new frames; nothing is
modified in place and nothing is kept between runs.

Order matters in three places:
- codes are normalized before any join or filter,
- the region filter runs before classification (classes are a statistic of
  the rendered population),
- everything is reprojected to the working CRS before simplification, spatial
  assignment and jitter, whose tolerances are in working-CRS units.

Usage:
    from processing.pipeline import PipelineInputs, PipelineSettings, build_layers

    settings = PipelineSettings.from_config(config)
    layers = build_layers(inputs, settings, rng=np.random.default_rng(7))
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

import geopandas as gpd
import numpy as np
import pandas as pd
from loguru import logger

from .classify import classify_column
from .errors import PipelineError
from .geometry import dissolve_region, reproject, simplify
from .identifiers import DEFAULT_PREFIX_WIDTH, fill_missing_unit_codes, normalize_code_column
from .joins import (
    assign_cells_to_units,
    filter_to_region,
    left_join,
    region_keys,
    require_unique,
)
from .layers import LayerBundle, LayerKind, assemble_layer, layer_from_frame
from .points import expand_observations
from .schemas import (
    ABUNDANCE,
    ABUNDANCE_CLASS,
    CELL_ID,
    DENSITY,
    OBSERVATION_ID,
    SPECIES,
    SURVEY_DATE,
    SURVEY_YEAR,
    WMU_CODE,
    WMU_NAME,
    WMU_RAW,
    apply_schema,
    build_schemas,
)


@dataclass(frozen=True)
class PipelineSettings:
    """Everything a run needs besides its input data."""

    columns: Mapping[str, Mapping[str, str]] = field(default_factory=dict)
    prefix_width: int = DEFAULT_PREFIX_WIDTH
    default_unit_code: str = "515"
    grid_codes_composite: bool = True
    assign_cells_by_location: bool = False
    target_species: str = "moose"
    quantile_classes: int = 10
    input_crs: str = "EPSG:4326"
    working_crs: str = "EPSG:3400"
    output_crs: str = "EPSG:4326"
    simplify_tolerance: float = 100.0
    max_area_change: float = 0.05
    jitter_radius: float = 500.0

    @classmethod
    def from_config(cls, config) -> "PipelineSettings":
        """Build settings from an ops Config (anything with dot-notation get())."""
        return cls(
            columns={
                table: config.get(f"columns.{table}", {})
                for table in ("units", "grid", "observations", "density", "predictions")
            },
            prefix_width=int(config.get("identifiers.prefix_width", DEFAULT_PREFIX_WIDTH)),
            default_unit_code=str(config.get("identifiers.default_unit_code", "515")),
            grid_codes_composite=bool(config.get("identifiers.grid_codes_composite", True)),
            assign_cells_by_location=bool(config.get("analysis.assign_cells_by_location", False)),
            target_species=str(config.get("analysis.target_species", "moose")),
            quantile_classes=int(config.get("analysis.quantile_classes", 10)),
            input_crs=str(config.get("system.input_crs", "EPSG:4326")),
            working_crs=str(config.get("system.working_crs", "EPSG:3400")),
            output_crs=str(config.get("system.output_crs", "EPSG:4326")),
            simplify_tolerance=float(config.get("system.simplify_tolerance", 100.0)),
            max_area_change=float(config.get("system.max_area_change", 0.05)),
            jitter_radius=float(config.get("system.jitter_radius", 500.0)),
        )


@dataclass(frozen=True)
class PipelineInputs:
    """Fully loaded source data, in source column names."""

    units: gpd.GeoDataFrame
    grid: gpd.GeoDataFrame
    observations: gpd.GeoDataFrame
    density: pd.DataFrame
    predictions: pd.DataFrame


def select_species(observations: gpd.GeoDataFrame, species: str) -> gpd.GeoDataFrame:
    """Keep observations of one species (tags compared case-insensitively)."""
    tags = observations[SPECIES].astype("string").str.strip().str.lower()
    target = species.strip().lower()

    result = observations[(tags == target).fillna(False).to_numpy(dtype=bool)].copy()
    result[SPECIES] = target

    logger.info(f"🔎 Selected {len(result):,} of {len(observations):,} observations tagged '{target}'")
    if len(result) == 0:
        raise PipelineError(f"No observations tagged '{target}'; nothing to map")
    return result


def _value_domain(values: pd.Series) -> Optional[tuple]:
    present = values.dropna()
    if len(present) == 0:
        return None
    return (float(present.min()), float(present.max()))


def build_layers(
    inputs: PipelineInputs,
    settings: PipelineSettings,
    rng: Optional[np.random.Generator] = None,
) -> LayerBundle:
    """
    Turn raw source frames into the four map layers.

    Args:
        inputs: Source frames
        settings: Run settings
        rng: Random source for jitter (a fresh unseeded generator if omitted)

    Returns:
        LayerBundle with units, grid, sightings and region layers
    """
    if rng is None:
        rng = np.random.default_rng()

    logger.info("🦌 Building moose map layers")
    schemas = build_schemas(settings.columns)

    # Schemas
    units = apply_schema(inputs.units, schemas["units"])
    grid = apply_schema(inputs.grid, schemas["grid"])
    observations = apply_schema(inputs.observations, schemas["observations"])
    density = apply_schema(inputs.density, schemas["density"])
    predictions = apply_schema(inputs.predictions, schemas["predictions"])
    # Ids are row positions in the caller's table, whatever its index
    observations = observations.reset_index(drop=True)
    observations[OBSERVATION_ID] = np.arange(len(observations))

    # Identifiers
    logger.info("🔑 Normalizing management unit codes...")
    units = normalize_code_column(units, WMU_RAW, WMU_CODE, settings.prefix_width, composite=True)
    density = normalize_code_column(density, WMU_RAW, WMU_CODE, composite=False)
    observations = normalize_code_column(observations, WMU_RAW, WMU_CODE, composite=False)
    observations = fill_missing_unit_codes(observations, WMU_CODE, settings.default_unit_code)
    if not settings.assign_cells_by_location:
        grid = normalize_code_column(
            grid,
            WMU_RAW,
            WMU_CODE,
            settings.prefix_width,
            composite=settings.grid_codes_composite,
        )
    grid = normalize_code_column(grid, CELL_ID, CELL_ID, composite=False)
    predictions = normalize_code_column(predictions, CELL_ID, CELL_ID, composite=False)

    # Region of interest
    observations = select_species(observations, settings.target_species)
    keys = region_keys(observations, WMU_CODE)
    logger.info(f"🎯 Region of interest: {len(keys):,} management units with observations")

    units = filter_to_region(units, keys, WMU_CODE)
    require_unique(units, WMU_CODE, "management units")
    unmapped = keys - set(units[WMU_CODE])
    if unmapped:
        logger.warning(f"  ⚠️ Observed units with no boundary polygon: {sorted(unmapped)}")

    # Working CRS
    logger.info(f"🌐 Reprojecting to working CRS {settings.working_crs}...")
    units = reproject(units, settings.working_crs, settings.input_crs)
    grid = reproject(grid, settings.working_crs, settings.input_crs)
    observations = reproject(observations, settings.working_crs, settings.input_crs)

    if settings.assign_cells_by_location:
        grid = assign_cells_to_units(grid.drop(columns=[WMU_RAW]), units, WMU_CODE)
    else:
        grid = filter_to_region(grid, keys, WMU_CODE)
    require_unique(grid, CELL_ID, "grid cells")

    # Attribute joins
    logger.info("🔗 Joining density and predictions...")
    units = left_join(units, density, WMU_CODE, [DENSITY, SURVEY_YEAR])
    grid = left_join(grid, predictions, CELL_ID, [ABUNDANCE])
    logger.info(
        f"  📊 {int(units[DENSITY].notna().sum()):,}/{len(units):,} units have a density estimate"
    )

    # Geometry
    units = simplify(
        units, settings.simplify_tolerance, settings.max_area_change, "management units"
    )
    grid = simplify(grid, settings.simplify_tolerance, settings.max_area_change, "grid cells")

    # Classification runs on the region's predicted cells only
    predicted = grid[grid[ABUNDANCE].notna()]
    dropped = len(grid) - len(predicted)
    if dropped:
        logger.info(f"  📭 {dropped:,} region grid cells have no prediction and are left out")
    predicted, classification = classify_column(
        predicted, ABUNDANCE, settings.quantile_classes, ABUNDANCE_CLASS
    )

    # Points
    sightings = expand_observations(observations, settings.jitter_radius, rng)

    region = dissolve_region(units)

    # Output
    logger.info(f"📦 Assembling layers in {settings.output_crs}...")
    units = reproject(units, settings.output_crs)
    predicted = reproject(predicted, settings.output_crs)
    sightings = reproject(sightings, settings.output_crs)
    region = reproject(region, settings.output_crs)

    bundle = LayerBundle(
        units=layer_from_frame(
            units[[WMU_CODE, WMU_NAME, DENSITY, SURVEY_YEAR, "geometry"]],
            "units",
            LayerKind.POLYGON,
            display_name="Moose density by WMU",
            value_field=DENSITY,
            value_domain=_value_domain(units[DENSITY]),
        ),
        grid=layer_from_frame(
            predicted[[CELL_ID, WMU_CODE, ABUNDANCE, ABUNDANCE_CLASS, "geometry"]],
            "grid",
            LayerKind.CLASSIFIED,
            display_name="Predicted moose abundance",
            value_field=ABUNDANCE_CLASS,
            value_domain=classification.value_domain,
            cut_points=classification.cut_points,
        ),
        sightings=layer_from_frame(
            sightings[[OBSERVATION_ID, "sighting_seq", SPECIES, WMU_CODE, SURVEY_DATE, "geometry"]],
            "sightings",
            LayerKind.POINT,
            display_name="Moose sightings",
        ),
        region=assemble_layer(
            "region",
            region.geometry,
            None,
            LayerKind.BOUNDARY,
            display_name="Survey region",
        ),
    )

    logger.success(
        f"✅ Layers ready: {len(bundle.units):,} units, {len(bundle.grid):,} grid cells, "
        f"{len(bundle.sightings):,} sightings"
    )
    return bundle


def summarize(bundle: LayerBundle) -> Dict[str, Any]:
    """Feature counts and color-mapping domains per layer, for reporting."""
    return {
        layer.name: {
            "kind": layer.kind.value,
            "features": len(layer),
            "value_field": layer.metadata.value_field,
            "value_domain": layer.metadata.value_domain,
        }
        for layer in bundle
    }
