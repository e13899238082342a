"""
geometry.py - CRS Reconciliation, Validation and Simplification

All frames are brought into one working CRS before anything spatial happens
(joins by location, jitter radii, simplification tolerances), and back to the
output CRS only at layer assembly.

Simplification bounds rendering cost only. It must not move a polygon across
a classification boundary, so it refuses invalid input, keeps shared edges
between neighbouring polygons identical, and checks validity and area drift
afterwards.
"""

from typing import List, Union

import geopandas as gpd
import numpy as np
import shapely
from loguru import logger
from pyproj import CRS
from shapely.validation import explain_validity

from .errors import CRSMismatch, InvalidGeometry

POLYGON_TYPES = ("Polygon", "MultiPolygon")


def reproject(
    frame: gpd.GeoDataFrame,
    target_crs: Union[str, CRS],
    assume_crs: Union[str, CRS] = "EPSG:4326",
) -> gpd.GeoDataFrame:
    """
    Transform a frame into target_crs.

    Args:
        frame: Input GeoDataFrame
        target_crs: Reference system every coordinate is moved into
        assume_crs: CRS assigned when the frame has none

    Returns:
        New GeoDataFrame in target_crs
    """
    target = CRS.from_user_input(target_crs)

    if frame.crs is None:
        logger.warning(f"  ⚠️ No CRS defined, assuming {assume_crs}")
        frame = frame.set_crs(assume_crs)

    if frame.crs.equals(target):
        logger.debug(f"  ✅ Already in target CRS: {target.to_string()}")
        return frame.copy()

    logger.debug(f"  🔄 Reprojecting from {frame.crs.to_string()} to {target.to_string()}")
    return frame.to_crs(target)


def ensure_common_crs(*frames: gpd.GeoDataFrame) -> None:
    """Raise CRSMismatch unless every frame has the same, defined CRS."""
    crs_list = [frame.crs for frame in frames]
    if any(crs is None for crs in crs_list):
        raise CRSMismatch("Spatial comparison with a frame that has no CRS")

    first = crs_list[0]
    for crs in crs_list[1:]:
        if not first.equals(crs):
            raise CRSMismatch(f"Mixed reference systems: {first.to_string()} vs {crs.to_string()}")


def _describe(frame: gpd.GeoDataFrame, mask, reason: str) -> List[str]:
    return [f"{idx}: {reason}" for idx in list(frame.index[np.asarray(mask)])[:5]]


def validate_geometries(frame: gpd.GeoDataFrame, name: str = "layer") -> None:
    """
    Reject null, empty, non-polygon, zero-area or self-intersecting geometries.

    Raises:
        InvalidGeometry: listing up to five offending features
    """
    geoms = frame.geometry
    problems: List[str] = []

    null_mask = geoms.isna()
    problems += _describe(frame, null_mask, "null geometry")

    present = geoms[~null_mask]
    empty_mask = present.is_empty
    problems += _describe(present, empty_mask, "empty geometry")

    present = present[~empty_mask]
    type_mask = ~present.geom_type.isin(POLYGON_TYPES)
    problems += _describe(present, type_mask, "not a polygon")

    polygons = present[~type_mask]
    parts = polygons.explode(index_parts=False)
    zero_mask = parts.area <= 0
    if zero_mask.any():
        degenerate = sorted(set(parts.index[np.asarray(zero_mask)]))
        problems += [f"{idx}: zero-area ring" for idx in degenerate[:5]]

    invalid = polygons[~polygons.is_valid]
    problems += [f"{idx}: {explain_validity(geom)}" for idx, geom in invalid.head(5).items()]

    if problems:
        raise InvalidGeometry(f"Invalid geometry in {name}: " + "; ".join(problems))

    logger.debug(f"  ✓ {len(frame):,} valid polygons in {name}")


def simplify(
    frame: gpd.GeoDataFrame,
    tolerance: float,
    max_area_change: float = 0.05,
    name: str = "layer",
) -> gpd.GeoDataFrame:
    """
    Reduce vertex counts while keeping polygons valid and neighbours adjacent.

    Args:
        frame: Polygon GeoDataFrame in a projected working CRS
        tolerance: Maximum vertex displacement, in CRS units
        max_area_change: Largest allowed relative area change per polygon
        name: Layer name for messages

    Returns:
        New GeoDataFrame with simplified geometry and untouched attributes
    """
    if tolerance < 0:
        raise ValueError(f"Simplification tolerance must be non-negative, got {tolerance}")

    validate_geometries(frame, name)

    if tolerance == 0 or len(frame) == 0:
        return frame.copy()

    logger.info(f"🔧 Simplifying {len(frame):,} polygons in {name} (tolerance: {tolerance})")
    geoms = np.asarray(frame.geometry.values)
    vertices_before = int(shapely.get_num_coordinates(geoms).sum())

    if shapely.coverage_is_valid(geoms):
        simplified = shapely.coverage_simplify(geoms, tolerance)
    else:
        logger.warning(f"  ⚠️ {name} is not a clean coverage, simplifying polygons independently")
        simplified = shapely.simplify(geoms, tolerance, preserve_topology=True)

    simplified = gpd.GeoSeries(simplified, index=frame.index, crs=frame.crs)

    broken = simplified.is_empty | ~simplified.is_valid
    if broken.any():
        raise InvalidGeometry(
            f"Simplification produced {int(broken.sum())} invalid polygons in {name}; "
            "lower the tolerance"
        )

    area_before = frame.geometry.area
    drift = (simplified.area - area_before).abs() / area_before
    drifted = drift > max_area_change
    if drifted.any():
        raise InvalidGeometry(
            f"Simplification changed the area of {int(drifted.sum())} polygons in {name} by more "
            f"than {max_area_change:.0%} (worst {drift.max():.1%}); lower the tolerance"
        )

    vertices_after = int(shapely.get_num_coordinates(np.asarray(simplified.values)).sum())
    logger.debug(f"  📉 Vertices: {vertices_before:,} → {vertices_after:,}")

    result = frame.copy()
    result[frame.geometry.name] = simplified
    return result


def dissolve_region(frame: gpd.GeoDataFrame) -> gpd.GeoDataFrame:
    """Dissolve all polygons into one outline with no attributes."""
    outline = frame.geometry.union_all()
    if outline.is_empty:
        raise InvalidGeometry("Region outline is empty; no polygons to dissolve")

    logger.debug(f"  🗺️ Dissolved {len(frame):,} polygons into one {outline.geom_type}")
    return gpd.GeoDataFrame(geometry=[outline], crs=frame.crs)
