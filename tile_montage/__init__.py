"""Tile Montage Package.

This package registers a rectangular grid of overlapping image tiles, such as
microscopy or whole-slide captures, into one consistent placement.

Main functionality:
- Phase correlation of adjacent tiles with configurable padding and sub-pixel
  peak interpolation
- Weighted least-squares global placement with loop closure
- Graceful fallback to stage coordinates for tiles that cannot be registered
- Per-edge diagnostics and accuracy evaluation

The resulting per-tile transforms are meant for a downstream compositor.
"""

from .evaluation import average_translation_error, registration_errors
from .montage import ProgressCallbacks, TileMontage
from .parameters import PaddingMethod, PeakInterpolationMethod, RegistrationParameters
from .registration import (
    CorrelationCandidate,
    EdgeDiagnostic,
    GridEdge,
    GridTopology,
    MontageResult,
    PairwiseResult,
    Tile,
    TileTransform,
    register_tiles,
)

__all__ = [
    'CorrelationCandidate',
    'EdgeDiagnostic',
    'GridEdge',
    'GridTopology',
    'MontageResult',
    'PaddingMethod',
    'PairwiseResult',
    'PeakInterpolationMethod',
    'ProgressCallbacks',
    'RegistrationParameters',
    'Tile',
    'TileMontage',
    'TileTransform',
    'average_translation_error',
    'register_tiles',
    'registration_errors',
]
