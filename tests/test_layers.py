"""Layer assembly and the frozen layer contract."""

import dataclasses

import geopandas as gpd
import pandas as pd
import pytest
from shapely.geometry import Point, box

from processing.errors import SchemaMismatch, ShapeMismatch
from processing.layers import LayerBundle, LayerKind, assemble_layer, layer_from_frame


@pytest.fixture
def unit_frame():
    return gpd.GeoDataFrame(
        {
            "wmu_code": ["515", "516"],
            "density": pd.array([0.42, None], dtype="Float64"),
            "survey_year": pd.array([2019, None], dtype="Int64"),
        },
        geometry=[box(0, 0, 1, 1), box(1, 0, 2, 1)],
        crs="EPSG:4326",
    )


@pytest.fixture
def units_layer(unit_frame):
    return layer_from_frame(
        unit_frame,
        "units",
        LayerKind.POLYGON,
        display_name="Density",
        value_field="density",
        value_domain=(0.42, 0.42),
    )


def test_layer_carries_one_row_per_geometry(units_layer):
    assert len(units_layer) == 2
    assert units_layer.fields == ("wmu_code", "density", "survey_year")
    assert units_layer.metadata.crs == "EPSG:4326"
    assert units_layer.kind is LayerKind.POLYGON


def test_missing_values_become_none(units_layer):
    first, second = units_layer.attributes

    assert first["density"] == pytest.approx(0.42)
    assert first["survey_year"] == 2019
    assert second["density"] is None
    assert second["survey_year"] is None


def test_count_mismatch(unit_frame):
    with pytest.raises(ShapeMismatch):
        assemble_layer(
            "units",
            unit_frame.geometry,
            pd.DataFrame({"wmu_code": ["515"]}),
            LayerKind.POLYGON,
            display_name="Units",
        )


def test_unknown_value_field(unit_frame):
    with pytest.raises(SchemaMismatch):
        layer_from_frame(
            unit_frame, "units", LayerKind.POLYGON, display_name="Units", value_field="abundance"
        )


def test_layer_is_frozen(units_layer):
    with pytest.raises(dataclasses.FrozenInstanceError):
        units_layer.name = "other"
    with pytest.raises(dataclasses.FrozenInstanceError):
        units_layer.metadata.value_field = "wmu_code"
    with pytest.raises(TypeError):
        units_layer.attributes[0]["density"] = 99.0
    with pytest.raises(TypeError):
        units_layer.geometries[0] = box(5, 5, 6, 6)


def test_layer_independent_of_source_frame(unit_frame, units_layer):
    unit_frame.loc[0, "wmu_code"] = "999"
    assert units_layer.attributes[0]["wmu_code"] == "515"


def test_to_geodataframe_is_a_fresh_copy(units_layer):
    frame = units_layer.to_geodataframe()
    frame.loc[0, "wmu_code"] = "999"

    assert units_layer.attributes[0]["wmu_code"] == "515"
    assert units_layer.to_geodataframe().loc[0, "wmu_code"] == "515"
    assert frame.crs == "EPSG:4326"


def test_boundary_layer_without_attributes():
    layer = assemble_layer(
        "region",
        gpd.GeoSeries([box(0, 0, 2, 1)], crs="EPSG:4326"),
        None,
        LayerKind.BOUNDARY,
        display_name="Region",
    )

    assert len(layer) == 1
    assert layer.fields == ()
    assert layer.metadata.crs == "EPSG:4326"
    frame = layer.to_geodataframe()
    assert list(frame.columns) == ["geometry"]
    assert len(frame) == 1


def test_classified_metadata():
    layer = assemble_layer(
        "grid",
        [box(0, 0, 1, 1), box(1, 0, 2, 1)],
        pd.DataFrame({"abundance_class": [1, 2]}),
        LayerKind.CLASSIFIED,
        display_name="Abundance",
        value_field="abundance_class",
        value_domain=(1, 2),
        cut_points=[3.5],
        crs="EPSG:4326",
    )
    assert layer.metadata.value_domain == (1, 2)
    assert layer.metadata.cut_points == (3.5,)


def test_bundle_iterates_in_fixed_order(units_layer):
    points = assemble_layer(
        "sightings", [Point(0.5, 0.5)], None, LayerKind.POINT, display_name="Sightings"
    )
    region = assemble_layer(
        "region", [box(0, 0, 2, 1)], None, LayerKind.BOUNDARY, display_name="Region"
    )
    grid = dataclasses.replace(units_layer, name="grid", kind=LayerKind.CLASSIFIED)
    bundle = LayerBundle(units=units_layer, grid=grid, sightings=points, region=region)

    assert [layer.name for layer in bundle] == ["units", "grid", "sightings", "region"]
    assert set(bundle.as_dict()) == {"units", "grid", "sightings", "region"}
