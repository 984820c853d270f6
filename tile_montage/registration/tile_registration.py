"""Tile registration pipeline.

This module registers every adjacent pair of a tile grid and reconciles the
pairwise offsets into one transform per tile. It includes:

- Parallel per-edge phase correlation (the only parallel stage)
- A single join point collecting every edge result before the global solve
- Per-edge diagnostics for external reporting

Edge registrations only read their two tiles and the shared, frozen
parameters, so they run on a thread pool without any locking.
"""
import logging
from dataclasses import dataclass
from multiprocessing import cpu_count
from multiprocessing.pool import ThreadPool
from typing import Callable, List, Optional, Sequence

import numpy as np
import pandas as pd
from tqdm import tqdm

from ..parameters import RegistrationParameters
from ._global_optimization import EdgeDiagnostic, GlobalPositionSolver, TileTransform
from ._grid_topology import GridEdge, GridTopology
from ._pairwise_registration import PairwiseRegistrar, PairwiseResult
from ._tensor_backend import TensorBackend, create_tensor_backend
from ._typing_utils import TileIndex

# Configure logger
logger = logging.getLogger(__name__)

AXES = "xyz"


@dataclass(frozen=True)
class MontageResult:
    """Everything the registration produces for one grid.

    Attributes:
        transforms: One transform per tile, row-major
        edges: One diagnostic per grid edge
        pairwise_results: Raw ranked candidates per grid edge
        cols: Number of grid columns, to look transforms up by index
    """
    transforms: List[TileTransform]
    edges: List[EdgeDiagnostic]
    pairwise_results: List[PairwiseResult]
    cols: int

    def transform(self, index: TileIndex) -> TileTransform:
        col, row = index
        transform = self.transforms[row * self.cols + col]
        if transform.index != (col, row):
            raise ValueError(f"No transform for tile {index}")
        return transform

    def fallback_edges(self) -> List[GridEdge]:
        """Edges that had no plausible candidate and used their stage offset."""
        return [d.edge for d in self.edges if d.used_fallback]

    def to_dataframe(self) -> pd.DataFrame:
        """One row per tile: ``col``, ``row``, ``x_pos``, ``y_pos`` (, ``z_pos``), ``from_stage_prior``."""
        records = []
        for transform in self.transforms:
            record = {"col": transform.index[0], "row": transform.index[1]}
            for axis, value in zip(AXES, transform.offset):
                record[f"{axis}_pos"] = value
            record["from_stage_prior"] = transform.from_stage_prior
            records.append(record)
        return pd.DataFrame.from_records(records)

    def diagnostics_dataframe(self) -> pd.DataFrame:
        """One row per edge comparing chosen, stage-implied and solved offsets."""
        records = []
        for diag in self.edges:
            record = {
                "fixed_col": diag.edge.fixed[0],
                "fixed_row": diag.edge.fixed[1],
                "moving_col": diag.edge.moving[0],
                "moving_row": diag.edge.moving[1],
                "direction": diag.edge.direction,
            }
            for axis, stage, solved in zip(AXES, diag.stage_offset, diag.solved_offset):
                record[f"stage_{axis}"] = stage
                record[f"solved_{axis}"] = solved
            for k, axis in enumerate(AXES[: len(diag.stage_offset)]):
                record[f"chosen_{axis}"] = np.nan if diag.chosen_offset is None else diag.chosen_offset[k]
            record["candidate_rank"] = diag.candidate_rank
            record["residual"] = diag.residual
            record["used_fallback"] = diag.used_fallback
            records.append(record)
        frame = pd.DataFrame.from_records(records)
        if not frame.empty:
            frame["candidate_rank"] = frame["candidate_rank"].astype("Int32")
        return frame


def register_edges(
    topology: GridTopology,
    params: RegistrationParameters,
    backend: Optional[TensorBackend] = None,
    progress: Optional[Callable[[int, int], None]] = None,
    show_progress: Optional[bool] = None,
) -> List[PairwiseResult]:
    """Register every grid edge, in parallel, returning results in edge order.

    Args:
        topology: The tile grid
        params: Registration parameters
        backend: Tensor backend for the FFTs (default: created from params)
        progress: Called with (completed, total) after each edge
        show_progress: Whether to show a tqdm progress bar (default: ``params.verbose``)

    Returns:
        One PairwiseResult per edge, in ``topology.edges()`` order
    """
    edges = topology.edges()
    if not edges:
        return []
    if show_progress is None:
        show_progress = params.verbose
    backend = backend or create_tensor_backend(params.tensor_backend)
    registrar = PairwiseRegistrar(params, backend)

    def register_one(edge: GridEdge) -> PairwiseResult:
        return registrar.register(edge, topology.tile(edge.fixed), topology.tile(edge.moving))

    n_workers = min(params.max_workers or cpu_count(), len(edges))
    logger.info(f"Registering {len(edges)} tile pairs with {n_workers} threads")

    results: List[PairwiseResult] = []
    with ThreadPool(processes=n_workers) as pool:
        for result in tqdm(
            pool.imap(register_one, edges),
            total=len(edges),
            desc="Registering tile pairs",
            disable=not show_progress,
        ):
            results.append(result)
            if progress is not None:
                progress(len(results), len(edges))

    n_empty = sum(1 for r in results if not r.candidates)
    if n_empty:
        logger.warning(f"{n_empty}/{len(results)} tile pairs have no plausible registration")
    return results


def solve_positions(
    topology: GridTopology,
    results: Sequence[PairwiseResult],
    params: RegistrationParameters,
) -> MontageResult:
    """Run the global solve on a complete set of pairwise results."""
    if len(results) != topology.expected_edge_count:
        raise ValueError(
            f"Global solve needs {topology.expected_edge_count} edge results, got {len(results)}"
        )
    solver = GlobalPositionSolver(
        fallback_weight=params.fallback_weight,
        prior_weight=params.prior_weight,
        residual_tolerance=params.residual_tolerance,
        reselection_iterations=params.reselection_iterations,
    )
    transforms, diagnostics = solver.solve(topology, results, reference=params.reference_tile)
    return MontageResult(transforms, diagnostics, list(results), topology.cols)


def register_tiles(
    topology: GridTopology,
    params: Optional[RegistrationParameters] = None,
    backend: Optional[TensorBackend] = None,
    show_progress: Optional[bool] = None,
) -> MontageResult:
    """Register a tile grid end to end.

    Args:
        topology: The tile grid
        params: Registration parameters (defaults if omitted)
        backend: Tensor backend for the FFTs
        show_progress: Whether to show a tqdm progress bar (default: ``params.verbose``)

    Returns:
        MontageResult with one transform per tile and per-edge diagnostics

    Raises:
        ValueError: If the reference tile is not part of the grid
    """
    params = params or RegistrationParameters()
    # Reject a bad reference before doing any registration work
    topology.flat_index(params.reference_tile)

    results = register_edges(topology, params, backend=backend, show_progress=show_progress)
    return solve_positions(topology, results, params)
