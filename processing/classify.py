"""
classify.py - Quantile Classification for Thematic Color Mapping

Classes are a statistic of the whole value population, not a per-value
function: the same abundance value can land in a different class once the
population changes. Classification therefore has to run on exactly the set of
values that will be rendered, i.e. after region filtering, and is recomputed
on every run.

Classes come from rank order: a value of rank r among n non-missing values
gets class floor(G * (r - 1) / n) + 1, computed in integers. Equal values share
the lowest rank of their group, so they always share a class and a boundary
group falls to the lower class. With at least G distinct values every class
1..G is occupied. The reported cut points are the linear-interpolated
empirical quantiles at k/G.
"""

from dataclasses import dataclass
from typing import Tuple

import numpy as np
import pandas as pd
from loguru import logger

from .errors import EmptyPopulation


@dataclass(frozen=True)
class QuantileClassification:
    """Per-value classes (nullable Int64, input index) plus the cut points used."""

    classes: pd.Series
    cut_points: Tuple[float, ...]
    num_classes: int

    @property
    def value_domain(self) -> Tuple[int, int]:
        return (1, self.num_classes)


def classify(values: pd.Series, num_classes: int) -> QuantileClassification:
    """
    Assign each value its 1-based quantile class.

    Args:
        values: Numeric values, missing entries allowed
        num_classes: Number of classes G (>= 2)

    Returns:
        QuantileClassification; missing inputs get <NA> instead of a class
    """
    if num_classes < 2:
        raise ValueError(f"num_classes must be at least 2, got {num_classes}")

    values = pd.Series(values)
    numeric = pd.to_numeric(values, errors="raise").astype("Float64")
    population = numeric.dropna().astype(float)

    distinct = population.nunique()
    if distinct < 2:
        raise EmptyPopulation(
            f"Quantile classification needs at least 2 distinct values, got {distinct}"
        )

    probabilities = np.arange(1, num_classes) / num_classes
    cut_points = population.quantile(probabilities).to_numpy()

    classes = pd.Series(pd.NA, index=values.index, dtype="Int64")
    present = numeric.notna().to_numpy()
    # Tied values share the lowest rank of their group
    ranks = population.rank(method="min").to_numpy(dtype=np.int64)
    classes.loc[present] = (num_classes * (ranks - 1)) // len(population) + 1

    logger.debug(
        f"  🎨 Classified {int(present.sum()):,} values into {num_classes} quantile classes "
        f"({classes.nunique()} occupied, {int((~present).sum()):,} without a value)"
    )
    return QuantileClassification(
        classes=classes,
        cut_points=tuple(float(c) for c in cut_points),
        num_classes=num_classes,
    )


def classify_column(
    frame: pd.DataFrame, column: str, num_classes: int, target: str
) -> Tuple[pd.DataFrame, QuantileClassification]:
    """Return a copy of frame with quantile classes of column stored in target."""
    logger.info(f"🎨 Classifying '{column}' into {num_classes} quantile classes...")
    result = classify(frame[column], num_classes)

    classified = frame.copy()
    classified[target] = result.classes
    return classified, result
