"""End-to-end layer pipeline over the synthetic survey area."""

import dataclasses

import geopandas as gpd
import numpy as np
import pandas as pd
import pytest
from shapely.geometry import Point

from processing.classify import classify
from processing.errors import AmbiguousJoin, PipelineError, SchemaMismatch
from processing.layers import LayerKind
from processing.pipeline import PipelineSettings, build_layers, select_species, summarize


@pytest.fixture
def bundle(inputs, settings, rng):
    return build_layers(inputs, settings, rng)


def _column(layer, field):
    return [row[field] for row in layer.attributes]


def test_four_layers(bundle):
    assert [layer.name for layer in bundle] == ["units", "grid", "sightings", "region"]
    assert [layer.kind for layer in bundle] == [
        LayerKind.POLYGON,
        LayerKind.CLASSIFIED,
        LayerKind.POINT,
        LayerKind.BOUNDARY,
    ]
    for layer in bundle:
        assert layer.metadata.crs == "EPSG:4326"


def test_units_limited_to_observed_region(bundle):
    # 517 only has a deer record
    assert sorted(_column(bundle.units, "wmu_code")) == ["515", "516"]


def test_density_joined_without_zero_fill(bundle):
    rows = {row["wmu_code"]: row for row in bundle.units.attributes}

    assert rows["515"]["density"] == pytest.approx(0.42)
    assert rows["515"]["survey_year"] == 2019
    assert rows["516"]["density"] is None
    assert rows["516"]["survey_year"] is None
    assert rows["515"]["wmu_name"] == "Pelican Mountain"
    assert bundle.units.metadata.value_domain == (pytest.approx(0.42), pytest.approx(0.42))


def test_grid_limited_to_region_and_predictions(bundle):
    cell_ids = _column(bundle.grid, "cell_id")

    # 32 region cells, two without a prediction row
    assert len(cell_ids) == 30
    assert len(set(cell_ids)) == 30
    assert "51500" not in cell_ids
    assert "51633" not in cell_ids
    assert not any(cell_id.startswith("517") for cell_id in cell_ids)
    assert set(_column(bundle.grid, "wmu_code")) == {"515", "516"}


def test_grid_classes(bundle, settings):
    classes = _column(bundle.grid, "abundance_class")

    assert set(classes) == set(range(1, settings.quantile_classes + 1))
    assert bundle.grid.metadata.value_field == "abundance_class"
    assert bundle.grid.metadata.value_domain == (1, settings.quantile_classes)


def test_classes_computed_on_region_only(bundle, predictions_df, settings):
    # Region predictions are 1..30; unit 517 carries 132..147
    assert bundle.grid.metadata.cut_points == pytest.approx((8.25, 15.5, 22.75))

    everything = classify(predictions_df["predicted_abundance"], settings.quantile_classes)
    assert everything.cut_points != pytest.approx(bundle.grid.metadata.cut_points)


def test_grid_classes_follow_abundance(bundle):
    pairs = sorted(zip(_column(bundle.grid, "abundance"), _column(bundle.grid, "abundance_class")))
    classes = [cls for _, cls in pairs]
    assert classes == sorted(classes)


def test_sightings_expand_moose_counts(bundle):
    # Moose x3, moose x1 and MOOSE x2; the deer record is dropped
    assert len(bundle.sightings) == 6
    assert set(_column(bundle.sightings, "species")) == {"moose"}
    assert sorted(_column(bundle.sightings, "wmu_code")) == ["515"] * 5 + ["516"]


def test_missing_unit_code_falls_back(bundle):
    rows = [row for row in bundle.sightings.attributes if row["observation_id"] == 2]
    assert len(rows) == 2
    assert {row["wmu_code"] for row in rows} == {"515"}


def test_sightings_near_their_observation(bundle, observations_gdf):
    sightings = bundle.sightings.to_geodataframe().to_crs("EPSG:3400")
    origins = observations_gdf.to_crs("EPSG:3400").geometry

    for point, obs_id in zip(sightings.geometry, sightings["observation_id"]):
        assert point.distance(origins.loc[obs_id]) <= 500.0 + 1e-6


def test_repeated_observation_index(inputs, settings, rng, observations_gdf):
    observations = observations_gdf.set_axis([0, 0, 1, 1])
    bundle = build_layers(dataclasses.replace(inputs, observations=observations), settings, rng)
    sightings = pd.DataFrame([dict(row) for row in bundle.sightings.attributes])

    assert sightings["observation_id"].value_counts().to_dict() == {0: 3, 1: 1, 2: 2}
    for _, group in sightings.groupby("observation_id"):
        assert list(group["sighting_seq"]) == list(range(len(group)))
        assert group["wmu_code"].nunique() == 1
    assert list(observations.index) == [0, 0, 1, 1]


def test_region_is_union_of_units(bundle, units_gdf):
    assert len(bundle.region) == 1
    assert bundle.region.fields == ()
    outline = bundle.region.geometries[0]
    expected = units_gdf.iloc[:2].union_all()
    assert outline.symmetric_difference(expected).area < 1e-4 * expected.area


def test_same_seed_same_output(inputs, settings):
    first = build_layers(inputs, settings, np.random.default_rng(9))
    second = build_layers(inputs, settings, np.random.default_rng(9))

    for a, b in zip(first.sightings.geometries, second.sightings.geometries):
        assert a.equals(b)
    assert first.grid.attributes == second.grid.attributes


def test_inputs_untouched(inputs, settings, rng, units_gdf, predictions_df):
    before_units = units_gdf.copy()
    before_predictions = predictions_df.copy()
    build_layers(inputs, settings, rng)

    pd.testing.assert_frame_equal(pd.DataFrame(inputs.predictions), before_predictions)
    assert list(inputs.units.columns) == list(before_units.columns)
    assert inputs.units.crs == before_units.crs


def test_assign_cells_by_location_matches_codes(inputs, settings, rng):
    by_code = build_layers(inputs, settings, np.random.default_rng(1))
    by_location = build_layers(
        inputs, dataclasses.replace(settings, assign_cells_by_location=True), rng
    )

    def cells(bundle):
        return sorted(zip(_column(bundle.grid, "cell_id"), _column(bundle.grid, "wmu_code")))

    assert cells(by_location) == cells(by_code)


def test_numeric_unit_codes_in_tables(inputs, settings, rng, density_df):
    # Codes read from CSV as text still meet the polygon codes
    density = density_df.assign(wmu=density_df["wmu"].astype(str))
    bundle = build_layers(dataclasses.replace(inputs, density=density), settings, rng)
    rows = {row["wmu_code"]: row for row in bundle.units.attributes}
    assert rows["515"]["density"] == pytest.approx(0.42)


def test_duplicate_density_rows(inputs, settings, rng, density_df):
    density = pd.concat([density_df, density_df.iloc[[0]]], ignore_index=True)
    with pytest.raises(AmbiguousJoin):
        build_layers(dataclasses.replace(inputs, density=density), settings, rng)


def test_missing_column(inputs, settings, rng, predictions_df):
    predictions = predictions_df.rename(columns={"predicted_abundance": "abundance_estimate"})
    with pytest.raises(SchemaMismatch):
        build_layers(dataclasses.replace(inputs, predictions=predictions), settings, rng)


def test_configured_column_names(inputs, rng, predictions_df):
    predictions = predictions_df.rename(columns={"predicted_abundance": "abundance_estimate"})
    settings = PipelineSettings(
        columns={"predictions": {"abundance": "abundance_estimate"}},
        quantile_classes=4,
        simplify_tolerance=50.0,
    )
    bundle = build_layers(dataclasses.replace(inputs, predictions=predictions), settings, rng)
    assert len(bundle.grid) == 30


def test_no_target_species(inputs, settings, rng):
    with pytest.raises(PipelineError):
        build_layers(inputs, dataclasses.replace(settings, target_species="caribou"), rng)


def test_select_species_is_case_insensitive():
    observations = gpd.GeoDataFrame(
        {"species": [" Moose", "DEER", None, "moose "]},
        geometry=[Point(0, 0)] * 4,
        crs="EPSG:4326",
    )
    selected = select_species(observations, "MOOSE")

    assert list(selected.index) == [0, 3]
    assert set(selected["species"]) == {"moose"}


def test_summarize(bundle):
    summary = summarize(bundle)

    assert summary["units"]["features"] == 2
    assert summary["grid"]["features"] == 30
    assert summary["sightings"]["features"] == 6
    assert summary["region"]["kind"] == "boundary"
