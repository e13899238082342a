"""
points.py - Count-Weighted Point Expansion and Jitter

A survey observation with count n stands for n animals seen at about the same
place. For heatmap rendering each animal becomes its own point, nudged by a
small random offset so that the markers do not stack exactly.

Jitter is for display only: the unit code carried on each sighting is the
parent observation's pre-jitter code, and anything that needs unit membership
must use that, not the jittered point.

Randomness always comes from an explicitly passed numpy Generator:

    rng = np.random.default_rng(42)
    sightings = jitter_sightings(expand(observation), radius=250.0, rng=rng)
"""

import dataclasses
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple

import geopandas as gpd
import numpy as np
import pandas as pd
from loguru import logger
from shapely.geometry import Point

from .errors import InvalidObservation
from .schemas import COUNT, OBSERVATION_ID


def _check_count(count: Any) -> int:
    if count is None or isinstance(count, bool) or pd.isna(count):
        raise InvalidObservation(f"Observation count must be an integer >= 1, got {count!r}")
    if int(count) != count or count < 1:
        raise InvalidObservation(f"Observation count must be an integer >= 1, got {count!r}")
    return int(count)


@dataclass(frozen=True)
class Observation:
    """One survey record: a location with a sighting count."""

    observation_id: Any
    x: float
    y: float
    species: str
    count: int
    timestamp: Optional[Any] = None
    unit_code: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "count", _check_count(self.count))


@dataclass(frozen=True)
class IndividualSighting:
    """One animal from an expanded observation."""

    observation_id: Any
    sequence: int
    x: float
    y: float
    species: str
    timestamp: Optional[Any] = None
    unit_code: Optional[str] = None

    @property
    def point(self) -> Point:
        return Point(self.x, self.y)


class ExpandedSightings(Sequence):
    """Lazy, restartable sequence of the sightings behind one observation."""

    def __init__(self, observation: Observation):
        self._observation = observation

    def __len__(self) -> int:
        return self._observation.count

    def __getitem__(self, i):
        if isinstance(i, slice):
            return [self[j] for j in range(*i.indices(len(self)))]
        if i < 0:
            i += len(self)
        if not 0 <= i < len(self):
            raise IndexError(i)

        obs = self._observation
        return IndividualSighting(
            observation_id=obs.observation_id,
            sequence=i,
            x=obs.x,
            y=obs.y,
            species=obs.species,
            timestamp=obs.timestamp,
            unit_code=obs.unit_code,
        )

    def __repr__(self):
        return f"ExpandedSightings({self._observation.observation_id!r}, count={len(self)})"


def expand(observation: Observation) -> ExpandedSightings:
    """One sighting per counted animal, all at the observation's location."""
    return ExpandedSightings(observation)


def disc_offsets(n: int, radius: float, rng: np.random.Generator) -> Tuple[np.ndarray, np.ndarray]:
    """Draw n offsets uniformly over a disc (uniform by area, not by radius)."""
    if radius < 0:
        raise ValueError(f"Jitter radius must be non-negative, got {radius}")

    distance = radius * np.sqrt(rng.random(n))
    angle = 2 * np.pi * rng.random(n)
    return distance * np.cos(angle), distance * np.sin(angle)


def jitter(point: Point, radius: float, rng: np.random.Generator) -> Point:
    """Displace a point by a random offset inside a disc of the given radius."""
    dx, dy = disc_offsets(1, radius, rng)
    return Point(point.x + dx[0], point.y + dy[0])


def jitter_sightings(
    sightings, radius: float, rng: np.random.Generator
) -> List[IndividualSighting]:
    """New sightings, each moved by its own independent draw."""
    sightings = list(sightings)
    dx, dy = disc_offsets(len(sightings), radius, rng)
    return [
        dataclasses.replace(s, x=s.x + float(ox), y=s.y + float(oy))
        for s, ox, oy in zip(sightings, dx, dy)
    ]


def expand_observations(
    frame: gpd.GeoDataFrame, radius: float, rng: np.random.Generator
) -> gpd.GeoDataFrame:
    """
    Expand an observation frame to one jittered point per counted animal.

    Args:
        frame: Point GeoDataFrame with a count column, in a projected CRS
        radius: Jitter radius in CRS units
        rng: Random source for the offsets

    Returns:
        New GeoDataFrame with one row per sighting; the count column is
        replaced by observation_id and sighting_seq
    """
    logger.info(f"🐾 Expanding {len(frame):,} observations (jitter radius: {radius})")

    counts = frame[COUNT]
    bad = counts.isna() | (counts < 1)
    if bad.any():
        raise InvalidObservation(
            f"{int(bad.sum())} observations have a missing or non-positive count, "
            f"e.g. rows {list(frame.index[np.asarray(bad)])[:5]}"
        )

    non_points = frame.geometry.geom_type != "Point"
    if non_points.any():
        raise InvalidObservation(f"{int(non_points.sum())} observations are not point geometries")

    repeats = counts.to_numpy(dtype=int)
    positions = np.repeat(np.arange(len(frame)), repeats)

    ids = frame[OBSERVATION_ID] if OBSERVATION_ID in frame.columns else pd.Series(frame.index)
    expanded = frame.iloc[positions].drop(columns=[COUNT]).reset_index(drop=True)
    expanded[OBSERVATION_ID] = np.asarray(ids)[positions]
    expanded["sighting_seq"] = expanded.groupby(OBSERVATION_ID).cumcount()

    dx, dy = disc_offsets(len(expanded), radius, rng)
    jittered = gpd.points_from_xy(
        expanded.geometry.x.to_numpy() + dx,
        expanded.geometry.y.to_numpy() + dy,
        crs=frame.crs,
    )
    expanded[expanded.geometry.name] = gpd.GeoSeries(jittered, index=expanded.index, crs=frame.crs)

    logger.success(f"  ✅ {len(frame):,} observations → {len(expanded):,} sightings")
    return expanded
