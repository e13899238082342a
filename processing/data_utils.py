#!/usr/bin/env python3
"""
data_utils.py - Input Loading and Layer Export

Thin file I/O around the pipeline: read the five source files named in
config, turn the observation table's coordinates into points, and write the
assembled layers out as GeoJSON. No pipeline logic lives here.
"""

from pathlib import Path
from typing import Dict, Union

import geopandas as gpd
import pandas as pd
from loguru import logger

from .layers import Layer, LayerBundle
from .pipeline import PipelineInputs


def load_vector(path: Union[str, Path], description: str = "features") -> gpd.GeoDataFrame:
    """Read any vector format geopandas understands (Shapefile, GeoJSON, GPKG)."""
    path = Path(path)
    logger.info(f"🗺️ Loading {description} from {path}")

    if not path.exists():
        logger.critical(f"❌ File not found: {path}")
        raise FileNotFoundError(f"Required file missing: {path}")

    gdf = gpd.read_file(path)
    logger.success(f"  ✅ Loaded {len(gdf):,} {description}")
    logger.debug(f"     CRS: {gdf.crs}")
    logger.debug(f"     Columns: {[c for c in gdf.columns if c != 'geometry']}")
    return gdf


def load_table(path: Union[str, Path], description: str = "records") -> pd.DataFrame:
    """Read a CSV table."""
    path = Path(path)
    logger.info(f"📊 Loading {description} from {path}")

    if not path.exists():
        logger.critical(f"❌ File not found: {path}")
        raise FileNotFoundError(f"Required file missing: {path}")

    df = pd.read_csv(path, low_memory=False)
    logger.success(f"  ✅ Loaded {len(df):,} {description}")
    return df


def observations_to_geodataframe(
    df: pd.DataFrame, lat_col: str, lon_col: str, crs: str = "EPSG:4326"
) -> gpd.GeoDataFrame:
    """Build point geometry from latitude/longitude columns.

    Rows without usable coordinates cannot be placed on a map and are dropped
    with a warning.
    """
    missing_cols = [col for col in (lat_col, lon_col) if col not in df.columns]
    if missing_cols:
        logger.critical(f"❌ Missing coordinate columns in observation data: {missing_cols}")
        raise ValueError(f"Observation data missing required columns: {missing_cols}")

    lat = pd.to_numeric(df[lat_col], errors="coerce")
    lon = pd.to_numeric(df[lon_col], errors="coerce")
    valid = lat.between(-90, 90) & lon.between(-180, 180)

    removed = int((~valid).sum())
    if removed > 0:
        logger.warning(f"  ⚠️ Removed {removed:,} observations with missing or invalid coordinates")

    kept = df[valid]
    return gpd.GeoDataFrame(
        kept.drop(columns=[lat_col, lon_col]),
        geometry=gpd.points_from_xy(lon[valid], lat[valid]),
        crs=crs,
    )


def load_inputs(config) -> PipelineInputs:
    """Load every source file named under input_files in config."""
    obs_columns = config.get("columns.observations", {})
    observations = observations_to_geodataframe(
        load_table(config.get_input_path("observations_csv"), "survey observations"),
        lat_col=obs_columns.get("latitude", "latitude"),
        lon_col=obs_columns.get("longitude", "longitude"),
        crs=config.get("system.input_crs", "EPSG:4326"),
    )

    return PipelineInputs(
        units=load_vector(config.get_input_path("wmu_boundaries"), "management units"),
        grid=load_vector(config.get_input_path("grid_cells"), "grid cells"),
        observations=observations,
        density=load_table(config.get_input_path("density_csv"), "density estimates"),
        predictions=load_table(config.get_input_path("predictions_csv"), "abundance predictions"),
    )


def ensure_output_directory(output_path: Union[str, Path]) -> Path:
    """Ensure output directory exists and return Path object.

    Args:
        output_path: Output file path (string or Path)

    Returns:
        Path object with directory created
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    return output_path


def export_layer(layer: Layer, output_path: Union[str, Path]) -> Path:
    """Write one layer as GeoJSON."""
    output_path = ensure_output_directory(output_path)
    gdf = layer.to_geodataframe()
    gdf.to_file(output_path, driver="GeoJSON")
    logger.info(f"  💾 {layer.name}: {len(gdf):,} features → {output_path}")
    return output_path


def export_layers(bundle: LayerBundle, output_dir: Union[str, Path]) -> Dict[str, Path]:
    """Write every layer of a bundle to <output_dir>/<layer name>.geojson."""
    output_dir = Path(output_dir)
    logger.info(f"💾 Exporting layers to {output_dir}")
    return {
        layer.name: export_layer(layer, output_dir / f"{layer.name}.geojson") for layer in bundle
    }
