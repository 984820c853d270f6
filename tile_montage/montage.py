import logging
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from .benchmarking_util import debug_timing
from .parameters import RegistrationParameters
from .registration import (
    GridTopology,
    MontageResult,
    create_tensor_backend,
    register_edges,
    solve_positions,
)
from .registration._typing_utils import NumArray, VectorLike


@dataclass
class ProgressCallbacks:
    update_progress: Callable[[int, int], None]
    starting_registration: Callable[[int], None]
    starting_solve: Callable[[], None]
    finished: Callable[[MontageResult], None]

    @classmethod
    def no_op(cls):
        return cls(
            update_progress=lambda _a, _b: None,
            starting_registration=lambda _n: None,
            starting_solve=lambda: None,
            finished=lambda _result: None,
        )


class TileMontage:
    """Registers a grid of tiles into one consistent placement.

    Compositing the tiles into an output canvas is left to the consumer of
    ``MontageResult.transforms``.
    """

    def __init__(
        self,
        params: Optional[RegistrationParameters] = None,
        callbacks: Optional[ProgressCallbacks] = None,
    ):
        self.params = params or RegistrationParameters()
        self.callbacks = callbacks or ProgressCallbacks.no_op()
        self.topology: Optional[GridTopology] = None
        self.result: Optional[MontageResult] = None
        # Fail on an unavailable backend before any tiles are set
        self.backend = create_tensor_backend(self.params.tensor_backend)

    def set_tiles(
        self,
        images: Sequence[NumArray],
        stage_positions: Sequence[VectorLike],
        rows: int,
        cols: int,
        spacing: Optional[VectorLike] = None,
    ) -> GridTopology:
        """Set the row-major tile grid to register."""
        topology = GridTopology.from_arrays(images, stage_positions, rows, cols, spacing)
        topology.flat_index(self.params.reference_tile)
        self.topology = topology
        self.result = None
        return topology

    def run(self, topology: Optional[GridTopology] = None) -> MontageResult:
        if topology is not None:
            topology.flat_index(self.params.reference_tile)
            self.topology = topology
        if self.topology is None:
            raise ValueError("No tiles set. Call set_tiles() or pass a GridTopology.")

        topology = self.topology
        logging.info(
            f"Registering {topology.rows}x{topology.cols} grid: padding={self.params.padding_method.value}, "
            f"peak interpolation={self.params.peak_interpolation.value}"
        )
        self.callbacks.starting_registration(topology.expected_edge_count)
        with debug_timing("pairwise registration"):
            results = register_edges(
                topology,
                self.params,
                backend=self.backend,
                progress=self.callbacks.update_progress,
                show_progress=self.params.verbose,
            )

        self.callbacks.starting_solve()
        with debug_timing("global solve"):
            self.result = solve_positions(topology, results, self.params)

        fallback = self.result.fallback_edges()
        if fallback:
            logging.info(f"{len(fallback)} of {len(results)} edges fell back to stage coordinates")
        self.callbacks.finished(self.result)
        return self.result
