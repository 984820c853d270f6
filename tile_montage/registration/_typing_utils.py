"""Type aliases for arrays and vectors used throughout the registration package.

Physical vectors (stage positions, spacing, offsets) are ordered ``(x, y[, z])``,
the reverse of numpy axis order.
"""
from typing import Any, Sequence, Tuple, Union

import numpy as np
import numpy.typing as npt

# Array type aliases
NumArray = npt.NDArray[Any]
FloatArray = npt.NDArray[np.float64]

# Grid index as (col, row)
TileIndex = Tuple[int, int]
VectorLike = Union[Sequence[float], FloatArray]
