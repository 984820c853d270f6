"""Phase correlation of overlapping tile regions.

The correlation surface is computed from the normalized cross-power spectrum:

    PCM = IFFT(F1 * conj(F2) / |F1 * conj(F2)|)

Both regions are first extended to a common, FFT-friendly shape with one of the
padding policies below. Padding only trades off spectral leakage against peak
sharpness; it never changes where the true peak is.
"""
import logging
import math
import warnings
from typing import Callable, Dict, Optional, Sequence, Tuple

import numpy as np
import scipy.fft

from ..parameters import PaddingMethod
from ._tensor_backend import TensorBackend, get_tensor_backend
from ._typing_utils import FloatArray, NumArray

logger = logging.getLogger(__name__)

# Padded values fall to exp(-DECAY_RATE) of the mirrored value at the far end
DECAY_RATE = 3.0
MAX_ARRAY_SIZE_GB = 2


def padded_shape(shape: Sequence[int], padding_fraction: float) -> Tuple[int, ...]:
    """Shape to which a region of ``shape`` is padded before the FFT."""
    if padding_fraction < 0:
        raise ValueError(f"padding_fraction must be non-negative, got {padding_fraction}")
    return tuple(
        max(int(n), scipy.fft.next_fast_len(int(math.ceil(n * (1.0 + padding_fraction)))))
        for n in shape
    )


def _pad_widths(shape: Sequence[int], target_shape: Sequence[int]) -> list:
    if len(shape) != len(target_shape):
        raise ValueError(f"Cannot pad {len(shape)}D image to {len(target_shape)}D shape")
    widths = []
    for n, m in zip(shape, target_shape):
        if m < n:
            raise ValueError(f"Target shape {tuple(target_shape)} is smaller than image shape {tuple(shape)}")
        widths.append((0, m - n))
    return widths


def _pad_zero(image: FloatArray, widths: list) -> FloatArray:
    return np.pad(image, widths, mode="constant", constant_values=0.0)


def _pad_mirror(image: FloatArray, widths: list) -> FloatArray:
    return np.pad(image, widths, mode="symmetric")


def _pad_edge(image: FloatArray, widths: list) -> FloatArray:
    return np.pad(image, widths, mode="edge")


def _pad_mirror_with_exponential_decay(image: FloatArray, widths: list) -> FloatArray:
    padded = np.pad(image, widths, mode="symmetric")
    for axis, (n, (_, width)) in enumerate(zip(image.shape, widths)):
        if width == 0:
            continue
        decay = np.ones(n + width)
        decay[n:] = np.exp(-DECAY_RATE * np.arange(1, width + 1) / width)
        shape = [1] * padded.ndim
        shape[axis] = n + width
        padded *= decay.reshape(shape)
    return padded


PADDING_FUNCTIONS: Dict[PaddingMethod, Callable[[FloatArray, list], FloatArray]] = {
    PaddingMethod.zero: _pad_zero,
    PaddingMethod.mirror: _pad_mirror,
    PaddingMethod.mirror_with_exponential_decay: _pad_mirror_with_exponential_decay,
    PaddingMethod.edge: _pad_edge,
}


def pad_image(image: NumArray, target_shape: Sequence[int], method: PaddingMethod) -> FloatArray:
    """Mean-center ``image`` and extend the trailing side of every axis to ``target_shape``.

    Args:
        image: Region to pad (any numeric dtype)
        target_shape: Shape after padding, at least ``image.shape`` on every axis
        method: Padding policy

    Returns:
        Float64 array of shape ``target_shape``

    Raises:
        ValueError: If the method is unknown or the target shape is too small
    """
    try:
        pad = PADDING_FUNCTIONS[PaddingMethod(method)]
    except ValueError:
        raise ValueError(f"Unknown padding method: {method}")

    centered = np.asarray(image, dtype=np.float64)
    centered = centered - centered.mean()
    return pad(centered, _pad_widths(centered.shape, target_shape))


def validate_image_pair(image1: NumArray, image2: NumArray) -> None:
    """Validate a pair of images for phase correlation.

    Raises:
        ValueError: If images are invalid or incompatible
    """
    if image1.ndim not in (2, 3) or image2.ndim not in (2, 3):
        raise ValueError("Images must be 2- or 3-dimensional")
    if image1.shape != image2.shape:
        raise ValueError(f"Images must have same shape. Got {image1.shape} and {image2.shape}")
    if image1.size == 0:
        raise ValueError("Images must not be empty")
    if not np.isfinite(image1).all() or not np.isfinite(image2).all():
        raise ValueError("Images contain non-finite values")

    array_size_gb = image1.nbytes / (1024**3)
    if array_size_gb > MAX_ARRAY_SIZE_GB:
        warnings.warn(f"Large image detected ({array_size_gb:.1f} GB). Consider downsampling.")


def pcm(
    image1: NumArray,
    image2: NumArray,
    regularization: float = 1e-12,
    backend: Optional[TensorBackend] = None,
) -> FloatArray:
    """Compute the phase correlation matrix of two same-shaped images.

    The peak of the result sits at the shift ``r`` for which
    ``image2[v] == image1[v + r]``, modulo the array extent.

    Args:
        image1: Fixed image
        image2: Moving image, same shape as image1
        regularization: Magnitudes are floored at this fraction of the largest
            cross-power magnitude before normalizing
        backend: Tensor backend to run the FFTs on (default: global backend)

    Returns:
        Real-valued correlation surface, same shape as the inputs. All zero when
        the images carry no usable spectral content.

    Raises:
        ValueError: If images are invalid or incompatible
    """
    validate_image_pair(image1, image2)
    backend = backend or get_tensor_backend()

    try:
        f1 = backend.fftn(backend.asarray(image1, dtype=np.float64))
        f2 = backend.fftn(backend.asarray(image2, dtype=np.float64))
        cross_power = f1 * backend.conjugate(f2)
        magnitude = backend.abs(cross_power)

        epsilon = max(np.finfo(np.float64).eps * 100, regularization * backend.max(magnitude))
        surface = backend.ifftn(cross_power / (magnitude + epsilon))
        result = backend.asnumpy(surface)
    finally:
        backend.cleanup_memory()

    max_imag = float(np.max(np.abs(result.imag)))
    if max_imag > 1e-6:
        logger.debug(f"Large imaginary component in PCM result: {max_imag:.2e}")
    return np.ascontiguousarray(result.real)


def correlate(
    fixed: NumArray,
    moving: NumArray,
    padding_method: PaddingMethod = PaddingMethod.zero,
    padding_fraction: float = 0.5,
    regularization: float = 1e-12,
    backend: Optional[TensorBackend] = None,
) -> FloatArray:
    """Pad a fixed/moving region pair to a common shape and phase-correlate them."""
    if fixed.shape != moving.shape:
        raise ValueError(f"Regions must have same shape. Got {fixed.shape} and {moving.shape}")
    target = padded_shape(fixed.shape, padding_fraction)
    return pcm(
        pad_image(fixed, target, padding_method),
        pad_image(moving, target, padding_method),
        regularization=regularization,
        backend=backend,
    )
