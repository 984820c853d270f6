import enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class PaddingMethod(enum.Enum):
    """How an overlap region is extended before the spectral transform."""

    zero = "zero"
    mirror = "mirror"
    mirror_with_exponential_decay = "mirror_with_exponential_decay"
    edge = "edge"


class PeakInterpolationMethod(enum.Enum):
    """How a correlation peak is refined to sub-pixel precision."""

    none = "none"
    parabolic = "parabolic"
    cosine = "cosine"
    weighted_centroid = "weighted_centroid"


class RegistrationParameters(
    BaseModel,
    use_attribute_docstrings=True,
):
    """Parameters for registering a grid of overlapping tiles."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    padding_method: PaddingMethod = PaddingMethod.zero
    """Strategy used to extend each overlap region before the FFT.

    zero avoids wraparound but dilutes the correlation peak; mirror and edge keep
    the peak sharp but can introduce spurious periodic peaks.
    """

    padding_fraction: float = Field(default=0.5, ge=0.0, le=4.0)
    """Extra extent added to each axis, as a fraction of the overlap size.

    The padded size is then rounded up to a size the FFT handles efficiently.
    """

    peak_interpolation: PeakInterpolationMethod = PeakInterpolationMethod.parabolic
    """Sub-pixel refinement applied to every correlation peak."""

    upsample_factor: int = Field(default=20, ge=1, le=100)
    """Samples per pixel of the local resampling the peak fit runs on.

    Three-point fits on the raw correlation samples are biased by up to a few
    tenths of a pixel; on the resampled grid the bias shrinks accordingly.
    1 fits the raw samples.
    """

    max_peaks: int = Field(default=4, ge=1, le=64)
    """Number of correlation peaks evaluated per tile pair."""

    confidence_floor: float = Field(default=5.0, ge=0.0)
    """Candidates whose peak height / surface RMS is below this are discarded."""

    hint_tolerance: float = Field(default=0.5, gt=0.0, le=1.0)
    """Largest accepted deviation from the stage-implied offset.

    Expressed per axis as a fraction of the overlap region's extent. Peaks that
    fold to a larger residual are treated as implausible.
    """

    regularization: float = Field(default=1e-12, ge=0.0)
    """Relative floor added to the cross-power magnitude before normalizing."""

    fallback_weight: float = Field(default=1e-3, gt=0.0)
    """Least-squares weight of an edge that falls back to its stage offset."""

    prior_weight: float = Field(default=1e-6, gt=0.0)
    """Weight of the stage prior used to anchor tiles cut off from the reference."""

    residual_tolerance: float = Field(default=2.0, gt=0.0)
    """Residual (physical units) above which an edge may switch to another candidate."""

    reselection_iterations: int = Field(default=2, ge=0)
    """Maximum number of candidate reselection rounds in the global solve."""

    reference_tile: tuple[int, int] = (0, 0)
    """Grid index (col, row) of the tile fixed at zero offset."""

    max_workers: Optional[int] = Field(default=None, ge=1)
    """Number of threads registering tile pairs. None means one per CPU."""

    tensor_backend: Literal["numpy", "cupy"] = "numpy"
    """Array library used for the FFTs."""

    verbose: bool = False
    """Show a progress bar while tile pairs are registered."""

    @classmethod
    def from_json_file(cls, json_path: str) -> "RegistrationParameters":
        """Create parameters from a JSON file.

        Args:
            json_path: Path to JSON file containing parameters

        Returns:
            RegistrationParameters: New instance with values from JSON
        """
        with open(json_path) as f:
            return cls.model_validate_json(f.read())

    def to_json_file(self, json_path: str) -> None:
        """Save parameters to a JSON file.

        Args:
            json_path: Path where JSON file should be saved
        """
        with open(json_path, "w") as f:
            f.write(self.model_dump_json(indent=2))
