"""
layers.py - Layer Assembly

The boundary between the pipeline and whatever renders it. A Layer packages a
geometry collection, one attribute mapping per feature and display metadata.
Layers are frozen: geometry is held as a tuple of shapely geometries and each
feature's attributes as a read-only mapping, so a renderer cannot alter
pipeline output in place. Renderers that want a frame call to_geodataframe(),
which always builds a new one.

Missing values (no density, no survey year) are stored as None so that they
render as "no data" rather than as zero.
"""

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Iterator, Mapping, Optional, Sequence, Tuple

import geopandas as gpd
import pandas as pd
from loguru import logger
from shapely.geometry.base import BaseGeometry

from .errors import SchemaMismatch, ShapeMismatch


class LayerKind(str, Enum):
    POLYGON = "polygon"
    CLASSIFIED = "classified"
    POINT = "point"
    BOUNDARY = "boundary"


@dataclass(frozen=True)
class LayerMetadata:
    display_name: str
    value_field: Optional[str] = None
    value_domain: Optional[Tuple[float, float]] = None
    cut_points: Tuple[float, ...] = ()
    crs: Optional[str] = None


@dataclass(frozen=True)
class Layer:
    name: str
    kind: LayerKind
    geometries: Tuple[BaseGeometry, ...]
    attributes: Tuple[Mapping[str, Any], ...]
    metadata: LayerMetadata

    def __len__(self) -> int:
        return len(self.geometries)

    @property
    def fields(self) -> Tuple[str, ...]:
        return tuple(self.attributes[0].keys()) if self.attributes else ()

    def to_geodataframe(self) -> gpd.GeoDataFrame:
        """Fresh GeoDataFrame copy of this layer."""
        if self.fields:
            frame = pd.DataFrame([dict(row) for row in self.attributes], columns=list(self.fields))
        else:
            frame = pd.DataFrame(index=range(len(self)))
        return gpd.GeoDataFrame(frame, geometry=list(self.geometries), crs=self.metadata.crs)


def _freeze_rows(attributes: pd.DataFrame) -> Tuple[Mapping[str, Any], ...]:
    if len(attributes.columns) == 0:
        return tuple(MappingProxyType({}) for _ in range(len(attributes)))
    plain = attributes.astype(object).where(attributes.notna(), None)
    return tuple(MappingProxyType(row) for row in plain.to_dict("records"))


def assemble_layer(
    name: str,
    geometry: Sequence[BaseGeometry],
    attributes: Optional[pd.DataFrame],
    kind: LayerKind,
    display_name: str,
    value_field: Optional[str] = None,
    value_domain: Optional[Tuple[float, float]] = None,
    cut_points: Sequence[float] = (),
    crs: Optional[Any] = None,
) -> Layer:
    """
    Package one geometry collection and its attribute rows into a Layer.

    Args:
        name: Machine name of the layer
        geometry: One geometry per feature (a GeoSeries or any sequence)
        attributes: One row per feature, or None for attribute-less layers
        kind: What the renderer should draw
        display_name: Human-readable layer title
        value_field: Attribute driving color mapping, if any
        value_domain: (min, max) of value_field for color scales
        cut_points: Class boundaries, for classified layers
        crs: CRS of the geometries (taken from a GeoSeries when omitted)

    Raises:
        ShapeMismatch: geometry and attribute counts differ
    """
    geometries = tuple(geometry)
    if attributes is None:
        attributes = pd.DataFrame(index=range(len(geometries)))

    if len(geometries) != len(attributes):
        raise ShapeMismatch(
            f"Layer '{name}' has {len(geometries):,} geometries but {len(attributes):,} attribute rows"
        )

    if value_field is not None and value_field not in attributes.columns:
        raise SchemaMismatch(f"Layer '{name}' value field '{value_field}' is not an attribute")

    if crs is None and isinstance(geometry, gpd.GeoSeries) and geometry.crs is not None:
        crs = geometry.crs
    crs_text = crs.to_string() if hasattr(crs, "to_string") else crs

    layer = Layer(
        name=name,
        kind=kind,
        geometries=geometries,
        attributes=_freeze_rows(attributes),
        metadata=LayerMetadata(
            display_name=display_name,
            value_field=value_field,
            value_domain=value_domain,
            cut_points=tuple(cut_points),
            crs=crs_text,
        ),
    )
    logger.debug(f"  📦 Assembled {kind.value} layer '{name}' with {len(layer):,} features")
    return layer


def layer_from_frame(frame: gpd.GeoDataFrame, name: str, kind: LayerKind, **kwargs) -> Layer:
    """assemble_layer() for a GeoDataFrame: geometry column plus every other column."""
    attributes = pd.DataFrame(frame.drop(columns=frame.geometry.name)).reset_index(drop=True)
    return assemble_layer(name, frame.geometry, attributes, kind, **kwargs)


@dataclass(frozen=True)
class LayerBundle:
    """The four layers produced by one pipeline run."""

    units: Layer
    grid: Layer
    sightings: Layer
    region: Layer

    def __iter__(self) -> Iterator[Layer]:
        return iter((self.units, self.grid, self.sightings, self.region))

    def as_dict(self) -> Dict[str, Layer]:
        return {layer.name: layer for layer in self}
