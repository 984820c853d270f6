"""Global optimization of tile positions.

Every grid edge contributes one noisy measurement of the offset between its
two tiles. Tile positions are the unknowns of an overdetermined linear system

    position[moving] - position[fixed] ~= measured_offset

solved by weighted least squares, with the reference tile fixed at zero. Loops
in the grid are closed by spreading their residual over all of their edges
instead of accumulating it along a single path.

The module includes:
- Pinning of tiles without any plausible registration to their stage prior
- Weak stage priors for groups of tiles cut off from the reference
- Reselection among ranked candidates when the top one disagrees with the solve
"""
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Set, Tuple

import networkx as nx
import numpy as np
import scipy.sparse
import scipy.sparse.linalg

from ._grid_topology import GridEdge, GridTopology
from ._pairwise_registration import CorrelationCandidate, PairwiseResult
from ._typing_utils import FloatArray, TileIndex

# Configure logger
logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TileTransform:
    """Final translation of one tile.

    Attributes:
        index: Grid index ``(col, row)``
        offset: Physical position ``(x, y[, z])`` relative to the reference tile
        from_stage_prior: True when the tile had no plausible registration and
            was placed from its stage coordinates alone
    """
    index: TileIndex
    offset: Tuple[float, ...]
    from_stage_prior: bool = False

    @property
    def offset_array(self) -> FloatArray:
        return np.asarray(self.offset, dtype=np.float64)


@dataclass(frozen=True)
class EdgeDiagnostic:
    """How one edge's measurement compares with the solved placement.

    Attributes:
        edge: The grid edge
        stage_offset: Offset implied by the stage coordinates
        chosen_offset: Registered offset used in the solve, None on fallback
        candidate_rank: Rank of the chosen candidate, None on fallback
        solved_offset: Offset between the two solved tile positions
        residual: Norm of ``solved_offset`` minus the measurement used
        used_fallback: True when the edge fell back to its stage offset
    """
    edge: GridEdge
    stage_offset: Tuple[float, ...]
    chosen_offset: Optional[Tuple[float, ...]]
    candidate_rank: Optional[int]
    solved_offset: Tuple[float, ...]
    residual: float
    used_fallback: bool


def _as_tuple(vector: FloatArray) -> Tuple[float, ...]:
    return tuple(float(v) for v in vector)


class GlobalPositionSolver:
    """Weighted least-squares reconciliation of pairwise offsets.

    Args:
        fallback_weight: Weight of an edge without plausible candidates; its
            stage offset is used as the measurement
        prior_weight: Weight of the stage prior anchoring tiles that have no
            path to the reference tile
        residual_tolerance: Residual above which an edge may switch to a
            lower-ranked candidate
        reselection_iterations: Maximum rounds of candidate reselection
    """

    def __init__(
        self,
        fallback_weight: float = 1e-3,
        prior_weight: float = 1e-6,
        residual_tolerance: float = 2.0,
        reselection_iterations: int = 2,
    ):
        if fallback_weight <= 0 or prior_weight <= 0:
            raise ValueError("fallback_weight and prior_weight must be positive")
        if residual_tolerance <= 0:
            raise ValueError("residual_tolerance must be positive")
        if reselection_iterations < 0:
            raise ValueError("reselection_iterations must be non-negative")
        self.fallback_weight = fallback_weight
        self.prior_weight = prior_weight
        self.residual_tolerance = residual_tolerance
        self.reselection_iterations = reselection_iterations

    def solve(
        self,
        topology: GridTopology,
        results: Sequence[PairwiseResult],
        reference: TileIndex = (0, 0),
    ) -> Tuple[List[TileTransform], List[EdgeDiagnostic]]:
        """Compute one transform per tile from all pairwise results.

        Args:
            topology: The tile grid
            results: One PairwiseResult per grid edge
            reference: Grid index of the tile fixed at zero offset

        Returns:
            Row-major list of TileTransform and one EdgeDiagnostic per result

        Raises:
            ValueError: If the results do not cover exactly the grid's edges or
                the reference tile is not part of the grid
        """
        self._validate_results(topology, results)
        ref = topology.flat_index(reference)
        stage = topology.stage_positions()
        prior = stage - stage[ref]

        # Chosen candidate rank per edge, None for fallback edges
        choices: List[Optional[int]] = [0 if r.candidates else None for r in results]

        registered: Set[int] = set()
        for result in results:
            if result.candidates:
                registered.add(topology.flat_index(result.edge.fixed))
                registered.add(topology.flat_index(result.edge.moving))
        unregistered = {i for i in range(len(topology)) if i not in registered}
        pinned = unregistered - {ref}
        if pinned:
            logger.warning(
                f"{len(pinned)} tiles have no plausible registration with any neighbour; "
                f"placing them at their stage coordinates"
            )

        for iteration in range(self.reselection_iterations + 1):
            positions = self._solve_positions(topology, results, choices, ref, pinned, prior)
            if iteration == self.reselection_iterations:
                break
            if not self._reselect_candidates(topology, results, choices, positions):
                break

        transforms = [
            TileTransform(tile.index, _as_tuple(positions[i]), from_stage_prior=i in unregistered)
            for i, tile in enumerate(topology)
        ]
        diagnostics = self._diagnostics(topology, results, choices, positions)

        n_fallback = sum(d.used_fallback for d in diagnostics)
        logger.info(
            f"Solved positions for {len(transforms)} tiles from {len(results)} edges "
            f"({n_fallback} using stage fallback)"
        )
        return transforms, diagnostics

    @staticmethod
    def _validate_results(topology: GridTopology, results: Sequence[PairwiseResult]) -> None:
        expected = {(e.fixed, e.moving) for e in topology.edges()}
        got = [(r.edge.fixed, r.edge.moving) for r in results]
        if len(got) != topology.expected_edge_count or set(got) != expected:
            raise ValueError(
                f"Expected one result for each of the {topology.expected_edge_count} grid edges, "
                f"got {len(got)} results covering {len(set(got) & expected)} of them"
            )

    def _measurement(
        self, result: PairwiseResult, choice: Optional[int]
    ) -> Tuple[FloatArray, float]:
        if choice is None:
            return result.edge.stage_offset_array, self.fallback_weight
        candidate: CorrelationCandidate = result.candidates[choice]
        return candidate.offset_array, float(candidate.confidence)

    def _solve_positions(
        self,
        topology: GridTopology,
        results: Sequence[PairwiseResult],
        choices: Sequence[Optional[int]],
        ref: int,
        pinned: Set[int],
        prior: FloatArray,
    ) -> FloatArray:
        n_tiles, ndim = prior.shape
        positions = np.zeros((n_tiles, ndim))
        for i in pinned:
            positions[i] = prior[i]

        unknowns = [i for i in range(n_tiles) if i != ref and i not in pinned]
        if not unknowns:
            return positions
        column: Dict[int, int] = {tile: col for col, tile in enumerate(unknowns)}

        row_idx: List[int] = []
        col_idx: List[int] = []
        values: List[float] = []
        rhs: List[FloatArray] = []
        weights: List[float] = []

        graph = nx.Graph()
        graph.add_nodes_from(unknowns)
        graph.add_node(ref)

        for result, choice in zip(results, choices):
            i = topology.flat_index(result.edge.fixed)
            j = topology.flat_index(result.edge.moving)
            if i in pinned or j in pinned:
                continue
            measurement, weight = self._measurement(result, choice)
            if not np.isfinite(weight) or weight <= 0 or not np.all(np.isfinite(measurement)):
                logger.warning(f"Ignoring edge {result.edge.fixed}->{result.edge.moving} with degenerate weight {weight}")
                continue

            row = len(rhs)
            target = measurement.copy()
            # Known positions (the reference) move to the right-hand side
            for tile, sign in ((j, 1.0), (i, -1.0)):
                if tile in column:
                    row_idx.append(row)
                    col_idx.append(column[tile])
                    values.append(sign)
                else:
                    target -= sign * positions[tile]
            rhs.append(target)
            weights.append(weight)
            graph.add_edge(i, j)

        for component in nx.connected_components(graph):
            if ref in component:
                continue
            logger.warning(
                f"{len(component)} tiles are not connected to the reference tile; "
                f"anchoring them with their stage coordinates"
            )
            for tile in sorted(component):
                row_idx.append(len(rhs))
                col_idx.append(column[tile])
                values.append(1.0)
                rhs.append(prior[tile].copy())
                weights.append(self.prior_weight)

        design = scipy.sparse.csr_matrix(
            (values, (row_idx, col_idx)), shape=(len(rhs), len(unknowns))
        )
        weight_matrix = scipy.sparse.diags(np.asarray(weights))
        normal = (design.T @ weight_matrix @ design).tocsc()
        weighted_rhs = design.T @ (weight_matrix @ np.asarray(rhs))

        solution = np.empty((len(unknowns), ndim))
        for axis in range(ndim):
            solution[:, axis] = np.atleast_1d(scipy.sparse.linalg.spsolve(normal, weighted_rhs[:, axis]))

        if not np.all(np.isfinite(solution)):
            logger.warning("Global solve is ill-conditioned; using stage coordinates for unresolved tiles")
            bad = ~np.all(np.isfinite(solution), axis=1)
            solution[bad] = prior[np.asarray(unknowns)[bad]]

        positions[np.asarray(unknowns)] = solution
        return positions

    def _reselect_candidates(
        self,
        topology: GridTopology,
        results: Sequence[PairwiseResult],
        choices: List[Optional[int]],
        positions: FloatArray,
    ) -> bool:
        """Switch edges to the candidate that best agrees with the current solve."""
        changed = False
        for k, (result, choice) in enumerate(zip(results, choices)):
            if choice is None or len(result.candidates) < 2:
                continue
            solved = (
                positions[topology.flat_index(result.edge.moving)]
                - positions[topology.flat_index(result.edge.fixed)]
            )
            residuals = [
                float(np.linalg.norm(candidate.offset_array - solved))
                for candidate in result.candidates
            ]
            if residuals[choice] <= self.residual_tolerance:
                continue
            best = int(np.argmin(residuals))
            if best != choice and residuals[best] <= self.residual_tolerance:
                logger.info(
                    f"Edge {result.edge.fixed}->{result.edge.moving}: switching from candidate "
                    f"{choice} (residual {residuals[choice]:.2f}) to {best} (residual {residuals[best]:.2f})"
                )
                choices[k] = best
                changed = True
        return changed

    def _diagnostics(
        self,
        topology: GridTopology,
        results: Sequence[PairwiseResult],
        choices: Sequence[Optional[int]],
        positions: FloatArray,
    ) -> List[EdgeDiagnostic]:
        diagnostics = []
        for result, choice in zip(results, choices):
            solved = (
                positions[topology.flat_index(result.edge.moving)]
                - positions[topology.flat_index(result.edge.fixed)]
            )
            measurement, _ = self._measurement(result, choice)
            diagnostics.append(
                EdgeDiagnostic(
                    edge=result.edge,
                    stage_offset=result.edge.stage_offset,
                    chosen_offset=None if choice is None else result.candidates[choice].offset,
                    candidate_rank=choice,
                    solved_offset=_as_tuple(solved),
                    residual=float(np.linalg.norm(solved - measurement)),
                    used_fallback=choice is None,
                )
            )
        return diagnostics
