"""Registration accuracy against known tile positions.

Used with synthetic or calibrated acquisitions where the true position of every
tile is known.
"""
from typing import Sequence

import numpy as np
import pandas as pd

from .registration import MontageResult
from .registration._typing_utils import VectorLike

AXES = "xyz"


def registration_errors(
    result: MontageResult,
    actual_positions: Sequence[VectorLike],
    reference_index: int = 0,
) -> pd.DataFrame:
    """Per-tile error of the registered transforms.

    Args:
        result: Output of the registration
        actual_positions: True physical position of every tile, row-major
        reference_index: Flat index of the reference tile used for ``result``

    Returns:
        DataFrame with ``x_tile``, ``y_tile`` and one ``<axis>_error`` column
        per dimension, where error is the transform minus the true position
        relative to the reference tile.
    """
    actual = np.asarray(actual_positions, dtype=np.float64)
    if actual.shape[0] != len(result.transforms):
        raise ValueError(f"Got {actual.shape[0]} actual positions for {len(result.transforms)} tiles")

    expected = actual - actual[reference_index]
    records = []
    for transform, truth in zip(result.transforms, expected):
        record = {"x_tile": transform.index[0], "y_tile": transform.index[1]}
        for axis, measured, true_value in zip(AXES, transform.offset, truth):
            record[f"{axis}_error"] = measured - true_value
        records.append(record)
    return pd.DataFrame.from_records(records)


def average_translation_error(errors: pd.DataFrame) -> float:
    """Summed absolute error per grid edge and per dimension.

    The absolute errors of all tiles and dimensions are summed, then divided
    by the number of edges of the grid spanned by ``x_tile``/``y_tile`` and by
    the number of dimensions. Returns 0.0 for a grid without edges.
    """
    error_columns = [c for c in errors.columns if c.endswith("_error")]
    if errors.empty or not error_columns:
        return 0.0
    cols = int(errors["x_tile"].max()) + 1
    rows = int(errors["y_tile"].max()) + 1
    n_edges = rows * (cols - 1) + cols * (rows - 1)
    if n_edges == 0:
        return 0.0
    total = float(errors[error_columns].abs().to_numpy().sum())
    return total / n_edges / len(error_columns)
