#!/usr/bin/env python3
"""
Moose Map Rendering

Draws a LayerBundle produced by processing.pipeline as an interactive Folium
map:
- WMU choropleth of survey density (units without an estimate in grey)
- Classed surface of predicted abundance by grid cell
- Heatmap of individual sightings
- Dissolved survey region outline

Rendering only reads the layers; all classification and filtering has
already happened in the pipeline.
"""

from pathlib import Path
from typing import List, Union

import folium
import matplotlib
import matplotlib.colors as mcolors
from folium.plugins import HeatMap
from loguru import logger

from processing.layers import Layer, LayerBundle

NO_DATA_COLOR = "#d3d3d3"


def class_palette(num_classes: int, cmap: str = "viridis") -> List[str]:
    """One hex color per quantile class, class 1 first."""
    colormap = matplotlib.colormaps[cmap].resampled(num_classes)
    return [mcolors.to_hex(colormap(i)) for i in range(num_classes)]


def _add_density_layer(m: folium.Map, layer: Layer, cmap: str) -> None:
    gdf = layer.to_geodataframe()
    field = layer.metadata.value_field
    domain = layer.metadata.value_domain
    colormap = matplotlib.colormaps[cmap]

    def style(feature):
        value = feature["properties"].get(field)
        if value is None or domain is None:
            color = NO_DATA_COLOR
        else:
            low, high = domain
            scaled = 0.5 if high == low else (value - low) / (high - low)
            color = mcolors.to_hex(colormap(scaled))
        return {"fillColor": color, "color": "#555555", "weight": 1, "fillOpacity": 0.6}

    folium.GeoJson(
        data=gdf.__geo_interface__,
        name=layer.metadata.display_name,
        style_function=style,
        tooltip=folium.GeoJsonTooltip(
            fields=["wmu_code", "wmu_name", "density", "survey_year"],
            aliases=["WMU:", "Name:", "Density:", "Survey year:"],
            localize=True,
            sticky=False,
            labels=True,
        ),
    ).add_to(m)


def _add_classified_layer(m: folium.Map, layer: Layer, cmap: str) -> None:
    gdf = layer.to_geodataframe()
    field = layer.metadata.value_field
    _, num_classes = layer.metadata.value_domain
    palette = class_palette(int(num_classes), cmap)

    folium.GeoJson(
        data=gdf.__geo_interface__,
        name=layer.metadata.display_name,
        style_function=lambda feature: {
            "fillColor": palette[feature["properties"][field] - 1],
            "color": palette[feature["properties"][field] - 1],
            "weight": 0,
            "fillOpacity": 0.7,
        },
        tooltip=folium.GeoJsonTooltip(
            fields=["cell_id", "abundance", field],
            aliases=["Cell:", "Predicted abundance:", "Quantile class:"],
            localize=True,
        ),
        show=False,
    ).add_to(m)


def create_moose_map(
    bundle: LayerBundle,
    output_path: Union[str, Path],
    tiles: str = "CartoDB Positron",
    zoom_start: int = 7,
    colormap: str = "viridis",
    density_colormap: str = "YlOrRd",
) -> Path:
    """
    Render all four layers to one HTML map.

    Returns:
        Path of the saved map
    """
    logger.info("🗺️ Creating interactive moose map...")
    output_path = Path(output_path)

    region = bundle.region.to_geodataframe()
    bounds = region.total_bounds
    center = [(bounds[1] + bounds[3]) / 2, (bounds[0] + bounds[2]) / 2]
    logger.debug(f"  📍 Map center: {center[0]:.4f}, {center[1]:.4f}")

    m = folium.Map(location=center, zoom_start=zoom_start, tiles=tiles, prefer_canvas=True)

    _add_density_layer(m, bundle.units, density_colormap)
    _add_classified_layer(m, bundle.grid, colormap)

    sightings = bundle.sightings.to_geodataframe()
    heat_data = [[point.y, point.x] for point in sightings.geometry]
    HeatMap(
        heat_data, name=bundle.sightings.metadata.display_name, radius=10, blur=15, min_opacity=0.3
    ).add_to(m)

    folium.GeoJson(
        region.__geo_interface__,
        name=bundle.region.metadata.display_name,
        style_function=lambda f: {"color": "#0066cc", "weight": 3, "fill": False, "opacity": 0.8},
    ).add_to(m)

    folium.LayerControl(collapsed=False).add_to(m)
    m.fit_bounds([[bounds[1], bounds[0]], [bounds[3], bounds[2]]])

    output_path.parent.mkdir(parents=True, exist_ok=True)
    m.save(output_path)
    logger.success(f"  ✅ Interactive map saved: {output_path}")
    return output_path
