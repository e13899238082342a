"""
Shared fixtures: a small synthetic survey area in northern Alberta.

Three adjacent one-degree WMUs (515, 516, 517), each covered by a 4x4 grid of
quarter-degree cells. Moose were seen in 515 and 516 only; 517 has a deer
record and high predictions, so it must drop out of the region of interest.
"""


import geopandas as gpd
import numpy as np
import pandas as pd
import pytest
from shapely.geometry import Point, box

from processing.pipeline import PipelineInputs, PipelineSettings

UNIT_WEST_EDGES = {"0515": -114.0, "0516": -113.0, "0517": -112.0}


@pytest.fixture
def units_gdf():
    return gpd.GeoDataFrame(
        {
            "WMUNIT_COD": list(UNIT_WEST_EDGES),
            "WMUNIT_NAM": ["Pelican Mountain", "Wabasca", "Peerless Lake"],
        },
        geometry=[box(west, 55.5, west + 1.0, 56.5) for west in UNIT_WEST_EDGES.values()],
        crs="EPSG:4326",
    )


@pytest.fixture
def grid_gdf():
    rows = []
    for code, west in UNIT_WEST_EDGES.items():
        for i in range(4):
            for j in range(4):
                rows.append(
                    {
                        "GRID_ID": f"{code[2:]}{i}{j}",
                        "WMUNIT_COD": code,
                        "geometry": box(
                            west + 0.25 * i, 55.5 + 0.25 * j, west + 0.25 * (i + 1), 55.5 + 0.25 * (j + 1)
                        ),
                    }
                )
    return gpd.GeoDataFrame(rows, geometry="geometry", crs="EPSG:4326")


@pytest.fixture
def predictions_df(grid_gdf):
    ids = list(grid_gdf["GRID_ID"])
    values = []
    for n, cell_id in enumerate(ids):
        if cell_id.startswith("517"):
            values.append(100.0 + n)
        else:
            values.append(float(n))
    df = pd.DataFrame({"GRID_ID": ids, "predicted_abundance": values})
    # Partial coverage: two region cells have no prediction row at all
    return df[~df["GRID_ID"].isin(["51500", "51633"])].reset_index(drop=True)


@pytest.fixture
def density_df():
    return pd.DataFrame(
        {"wmu": [515, 517], "density": [0.42, 0.31], "survey_year": [2019, 2021]}
    )


@pytest.fixture
def observations_gdf():
    return gpd.GeoDataFrame(
        {
            "species": ["Moose", "moose", "MOOSE", "deer"],
            "count": [3, 1, 2, 5],
            "wmu": [515.0, 516.0, None, 517.0],
            "survey_date": ["2019-01-14", "2019-01-15", "2019-01-15", "2021-02-02"],
        },
        geometry=[
            Point(-113.6, 56.1),
            Point(-112.4, 55.8),
            Point(-113.3, 55.7),
            Point(-111.5, 56.0),
        ],
        crs="EPSG:4326",
    )


@pytest.fixture
def inputs(units_gdf, grid_gdf, observations_gdf, density_df, predictions_df):
    return PipelineInputs(
        units=units_gdf,
        grid=grid_gdf,
        observations=observations_gdf,
        density=density_df,
        predictions=predictions_df,
    )


@pytest.fixture
def settings():
    return PipelineSettings(quantile_classes=4, simplify_tolerance=50.0, jitter_radius=500.0)


@pytest.fixture
def rng():
    return np.random.default_rng(20190114)
