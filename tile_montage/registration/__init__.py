"""Registration module for tile montages.

This module estimates pairwise tile offsets by phase correlation and reconciles
them into one translation per tile, without compositing the tiles.
"""

from ._global_optimization import EdgeDiagnostic, GlobalPositionSolver, TileTransform
from ._grid_topology import GridEdge, GridTopology, Tile
from ._pairwise_registration import CorrelationCandidate, PairwiseRegistrar, PairwiseResult
from ._peak_finding import Peak, find_peaks
from ._spectral_correlation import correlate, pad_image, pcm
from ._tensor_backend import TensorBackend, create_tensor_backend
from .tile_registration import MontageResult, register_edges, register_tiles, solve_positions

__all__ = [
    'CorrelationCandidate',
    'EdgeDiagnostic',
    'GlobalPositionSolver',
    'GridEdge',
    'GridTopology',
    'MontageResult',
    'PairwiseRegistrar',
    'PairwiseResult',
    'Peak',
    'TensorBackend',
    'Tile',
    'TileTransform',
    'correlate',
    'create_tensor_backend',
    'find_peaks',
    'pad_image',
    'pcm',
    'register_edges',
    'register_tiles',
    'solve_positions',
]
