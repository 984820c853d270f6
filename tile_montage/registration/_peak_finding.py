"""Peak finding on periodic correlation surfaces.

A correlation surface produced by the FFT is periodic, so neighbourhoods wrap
around its borders and every peak location is folded to the offset nearest to
zero, i.e. into ``[-n/2, n/2)`` along each axis.
"""
import logging
import math
import warnings
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Sequence, Tuple

import numpy as np
import scipy.fft
from scipy import ndimage

from ..parameters import PeakInterpolationMethod
from ._typing_utils import FloatArray

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Peak:
    """One local maximum of a correlation surface.

    Attributes:
        location: Integer array index of the maximum
        shift: Folded, sub-pixel refined shift (numpy axis order)
        height: Surface value at the maximum
        confidence: Height relative to the RMS of the whole surface
    """
    location: Tuple[int, ...]
    shift: Tuple[float, ...]
    height: float
    confidence: float


# ============================================================================
# SUB-PIXEL INTERPOLATION
# ============================================================================

def _interpolate_none(before: float, center: float, after: float) -> float:
    return 0.0


def _interpolate_parabolic(before: float, center: float, after: float) -> float:
    denominator = before - 2.0 * center + after
    if denominator >= 0.0:
        # Not a maximum of the fitted parabola
        return 0.0
    return (before - after) / (2.0 * denominator)


def _interpolate_cosine(before: float, center: float, after: float) -> float:
    if center <= 0.0:
        return 0.0
    ratio = (before + after) / (2.0 * center)
    if not -1.0 < ratio < 1.0:
        return _interpolate_parabolic(before, center, after)
    omega = math.acos(ratio)
    theta = math.atan((before - after) / (2.0 * center * math.sin(omega)))
    return -theta / omega


def _interpolate_weighted_centroid(before: float, center: float, after: float) -> float:
    before, after = max(before, 0.0), max(after, 0.0)
    total = before + center + after
    if total <= 0.0:
        return 0.0
    return (after - before) / total


INTERPOLATION_FUNCTIONS: Dict[PeakInterpolationMethod, Callable[[float, float, float], float]] = {
    PeakInterpolationMethod.none: _interpolate_none,
    PeakInterpolationMethod.parabolic: _interpolate_parabolic,
    PeakInterpolationMethod.cosine: _interpolate_cosine,
    PeakInterpolationMethod.weighted_centroid: _interpolate_weighted_centroid,
}


def interpolate_peak(
    surface: FloatArray,
    location: Sequence[int],
    method: PeakInterpolationMethod,
) -> Tuple[float, ...]:
    """Sub-pixel correction of a maximum, one 1-D fit per axis.

    Each fit uses the maximum and its two neighbours along that axis, wrapping
    around the surface border. Corrections are clamped to half a pixel.
    """
    fit = INTERPOLATION_FUNCTIONS[PeakInterpolationMethod(method)]
    center = float(surface[tuple(location)])
    corrections = []
    for axis, n in enumerate(surface.shape):
        before_idx = list(location)
        after_idx = list(location)
        before_idx[axis] = (location[axis] - 1) % n
        after_idx[axis] = (location[axis] + 1) % n
        delta = fit(float(surface[tuple(before_idx)]), center, float(surface[tuple(after_idx)]))
        if not math.isfinite(delta):
            delta = 0.0
        corrections.append(min(max(delta, -0.5), 0.5))
    return tuple(corrections)


def upsampled_window(spectrum: np.ndarray, location: Sequence[int], upsample_factor: int) -> FloatArray:
    """Band-limited samples of a surface around ``location``, given its spectrum.

    Evaluates the inverse DFT only on a grid spanning one pixel either side of
    ``location`` with spacing ``1 / upsample_factor``, one matrix product per
    axis, instead of zero-padding the whole spectrum.

    Returns:
        Real array of shape ``(2 * upsample_factor + 1,) * ndim``; the centre
        sample equals the surface value at ``location``
    """
    offsets = np.arange(-upsample_factor, upsample_factor + 1) / upsample_factor
    window = spectrum
    for axis, (n, loc) in enumerate(zip(spectrum.shape, location)):
        kernel = np.exp(2j * np.pi * np.outer(loc + offsets, scipy.fft.fftfreq(n)))
        window = np.moveaxis(np.tensordot(kernel, window, axes=([1], [axis])), 0, axis)
    return window.real / spectrum.size


def _refine_upsampled(
    spectrum: np.ndarray,
    location: Sequence[int],
    method: PeakInterpolationMethod,
    upsample_factor: int,
) -> Tuple[float, ...]:
    window = upsampled_window(spectrum, location, upsample_factor)
    best = np.unravel_index(int(np.argmax(window)), window.shape)
    fit = INTERPOLATION_FUNCTIONS[PeakInterpolationMethod(method)]
    center = float(window[best])

    corrections = []
    for axis, k in enumerate(best):
        delta = 0.0
        # The window does not wrap, so its border samples get no fit
        if 0 < k < window.shape[axis] - 1:
            before_idx = list(best)
            after_idx = list(best)
            before_idx[axis] = k - 1
            after_idx[axis] = k + 1
            delta = fit(float(window[tuple(before_idx)]), center, float(window[tuple(after_idx)]))
            delta = min(max(delta, -0.5), 0.5) if math.isfinite(delta) else 0.0
        corrections.append((k - upsample_factor + delta) / upsample_factor)
    return tuple(corrections)


# ============================================================================
# PEAK SEARCH
# ============================================================================

def fold_shift(location: Sequence[float], shape: Sequence[int]) -> Tuple[float, ...]:
    """Fold a location on a periodic surface into ``[-n/2, n/2)`` per axis."""
    folded = []
    for value, n in zip(location, shape):
        wrapped = value % n
        if wrapped >= n / 2.0:
            wrapped -= n
        folded.append(float(wrapped))
    return tuple(folded)


def surface_rms(surface: FloatArray) -> float:
    """Root mean square of a correlation surface."""
    return float(np.sqrt(np.mean(np.square(surface, dtype=np.float64))))


def validate_surface(surface: Any) -> None:
    """Validate a correlation surface.

    Raises:
        TypeError: If the surface is not array-like
        ValueError: If it has the wrong dimensionality, size or values
    """
    if surface is None or not hasattr(surface, "shape") or not hasattr(surface, "dtype"):
        raise TypeError(f"Surface must be array-like with 'shape' and 'dtype' attributes, got {type(surface)}")
    if surface.ndim not in (2, 3):
        raise ValueError(f"Surface must be 2- or 3-dimensional, got shape {surface.shape}")
    if min(surface.shape) < 2:
        raise ValueError(f"Surface dimensions too small: {surface.shape}. Minimum size is 2 per axis")
    if not np.issubdtype(surface.dtype, np.number):
        raise ValueError(f"Surface must be numeric, got dtype {surface.dtype}")
    if np.iscomplexobj(surface):
        warnings.warn("Complex surface given to peak finder; using its real part.", UserWarning, stacklevel=3)
    if not np.all(np.isfinite(surface)):
        raise ValueError("Surface contains non-finite values (NaN or infinity)")


def find_peaks(
    surface: FloatArray,
    max_peaks: int = 4,
    method: PeakInterpolationMethod = PeakInterpolationMethod.parabolic,
    upsample_factor: int = 1,
) -> List[Peak]:
    """Find the highest local maxima of a periodic correlation surface.

    Parameters
    ----------
    surface : FloatArray
        Correlation surface, typically the output of ``pcm``.
    max_peaks : int
        Number of peaks to return at most. Must be positive.
    method : PeakInterpolationMethod
        Sub-pixel refinement applied to every peak.
    upsample_factor : int
        When above 1, each peak is first located on a band-limited resampling
        of the surface with this many samples per pixel, and ``method`` is
        applied to that finer grid. 1 fits the raw samples directly.

    Returns
    -------
    List[Peak]
        Strictly positive local maxima, highest first. Equal heights are
        ordered by their flat array index, so the result is deterministic.
        Empty when the surface has no positive maximum (e.g. blank input).
    """
    validate_surface(surface)
    if not isinstance(max_peaks, (int, np.integer)) or max_peaks <= 0:
        raise ValueError(f"max_peaks must be a positive integer, got {max_peaks}")
    if not isinstance(upsample_factor, (int, np.integer)) or upsample_factor < 1:
        raise ValueError(f"upsample_factor must be a positive integer, got {upsample_factor}")

    surface = np.asarray(np.real(surface), dtype=np.float64)
    rms = surface_rms(surface)
    if rms == 0.0:
        return []

    local_max = ndimage.maximum_filter(surface, size=3, mode="wrap")
    is_peak = (surface == local_max) & (surface > 0.0)
    flat_indices = np.flatnonzero(is_peak)
    if flat_indices.size == 0:
        return []

    heights = surface.ravel()[flat_indices]
    order = np.argsort(-heights, kind="stable")[:max_peaks]

    method = PeakInterpolationMethod(method)
    upsample = upsample_factor > 1 and method != PeakInterpolationMethod.none
    spectrum = scipy.fft.fftn(surface) if upsample else None

    peaks = []
    for flat_idx in flat_indices[order]:
        location = tuple(int(i) for i in np.unravel_index(flat_idx, surface.shape))
        if upsample:
            correction = _refine_upsampled(spectrum, location, method, upsample_factor)
        else:
            correction = interpolate_peak(surface, location, method)
        refined = [loc + delta for loc, delta in zip(location, correction)]
        height = float(surface[location])
        peaks.append(
            Peak(
                location=location,
                shift=fold_shift(refined, surface.shape),
                height=height,
                confidence=height / rms,
            )
        )

    logger.debug(f"Found {len(peaks)} peaks; best confidence {peaks[0].confidence:.2f}")
    return peaks
