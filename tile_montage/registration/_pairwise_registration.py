"""Registration of a single pair of adjacent tiles.

The stage-implied offset bounds the region both tiles are expected to share.
That region is cut out of each tile, padded, phase-correlated, and every
correlation peak is turned into a candidate offset for the whole pair. Peaks
that are weak, too far from the stage hint, or that would leave the tiles
without any overlap are dropped. An empty candidate list is a normal outcome
(blank or non-overlapping tiles), not an error.
"""
import logging
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from ..parameters import RegistrationParameters
from ._grid_topology import GridEdge, Tile
from ._peak_finding import find_peaks
from ._spectral_correlation import correlate
from ._stage_model import (
    compute_overlap_regions,
    is_plausible_offset,
    pixels_to_stage_offset,
    stage_offset_to_pixels,
)
from ._tensor_backend import TensorBackend
from ._typing_utils import FloatArray

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CorrelationCandidate:
    """One hypothesized offset of the moving tile relative to the fixed tile.

    Attributes:
        offset: Physical offset ``(x, y[, z])``
        confidence: Correlation peak height relative to the surface RMS
    """
    offset: Tuple[float, ...]
    confidence: float

    @property
    def offset_array(self) -> FloatArray:
        return np.asarray(self.offset, dtype=np.float64)


@dataclass(frozen=True)
class PairwiseResult:
    """Ranked candidates (highest confidence first) for one grid edge."""
    edge: GridEdge
    candidates: Tuple[CorrelationCandidate, ...]

    @property
    def best(self) -> Optional[CorrelationCandidate]:
        return self.candidates[0] if self.candidates else None


class PairwiseRegistrar:
    """Phase-correlation registration of one tile pair.

    Holds only immutable configuration, so a single instance can serve many
    threads at once.
    """

    def __init__(self, params: RegistrationParameters, backend: Optional[TensorBackend] = None):
        self.params = params
        self.backend = backend

    def register(self, edge: GridEdge, fixed: Tile, moving: Tile) -> PairwiseResult:
        """Estimate candidate offsets of ``moving`` relative to ``fixed``.

        Args:
            edge: Edge joining the two tiles; provides the stage-implied offset
            fixed: Fixed tile (``edge.fixed``)
            moving: Moving tile (``edge.moving``)

        Returns:
            PairwiseResult with candidates ranked by confidence, possibly empty
        """
        params = self.params
        spacing = fixed.spacing
        hint_pixels = np.rint(stage_offset_to_pixels(edge.stage_offset, spacing)).astype(np.int64)

        regions = compute_overlap_regions(fixed.image.shape, moving.image.shape, hint_pixels)
        if regions is None or min(regions.shape) < 2:
            logger.debug(f"Edge {edge.fixed}->{edge.moving}: no overlap at stage offset {edge.stage_offset}")
            return PairwiseResult(edge, ())

        surface = correlate(
            fixed.image[regions.fixed_slices],
            moving.image[regions.moving_slices],
            padding_method=params.padding_method,
            padding_fraction=params.padding_fraction,
            regularization=params.regularization,
            backend=self.backend,
        )
        peaks = find_peaks(
            surface,
            max_peaks=params.max_peaks,
            method=params.peak_interpolation,
            upsample_factor=params.upsample_factor,
        )

        max_residual = params.hint_tolerance * np.asarray(regions.shape, dtype=np.float64)
        candidates = []
        for peak in peaks:
            residual = np.asarray(peak.shift)
            if peak.confidence < params.confidence_floor:
                continue
            if np.any(np.abs(residual) > max_residual):
                continue
            pixel_offset = hint_pixels + residual
            if not is_plausible_offset(fixed.image.shape, moving.image.shape, pixel_offset):
                continue
            offset = pixels_to_stage_offset(pixel_offset, spacing)
            candidates.append(
                CorrelationCandidate(tuple(float(v) for v in offset), float(peak.confidence))
            )

        candidates.sort(key=lambda c: -c.confidence)
        if candidates:
            logger.debug(
                f"Edge {edge.fixed}->{edge.moving}: {len(candidates)}/{len(peaks)} candidates kept, "
                f"best offset {candidates[0].offset} (confidence {candidates[0].confidence:.2f})"
            )
        else:
            logger.debug(f"Edge {edge.fixed}->{edge.moving}: no plausible peak among {len(peaks)}")
        return PairwiseResult(edge, tuple(candidates))
