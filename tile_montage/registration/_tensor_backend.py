"""Tensor backend abstraction for the FFT-heavy parts of registration.

The spectral correlator only needs a handful of array operations, so a backend
exposes exactly those. NumPy (via ``scipy.fft``) is always available; CuPy is
used when requested and importable.
"""

import logging
import warnings
from abc import ABC, abstractmethod
from typing import Any, Optional

import numpy as np
import scipy.fft

logger = logging.getLogger(__name__)


class TensorBackend(ABC):
    """Abstract base class for tensor backends."""

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @property
    @abstractmethod
    def is_gpu(self) -> bool:
        pass

    @abstractmethod
    def asarray(self, array: Any, dtype: Any = None) -> Any:
        pass

    @abstractmethod
    def asnumpy(self, array: Any) -> np.ndarray:
        pass

    @abstractmethod
    def fftn(self, array: Any) -> Any:
        pass

    @abstractmethod
    def ifftn(self, array: Any) -> Any:
        pass

    @abstractmethod
    def abs(self, array: Any) -> Any:
        pass

    @abstractmethod
    def conjugate(self, array: Any) -> Any:
        pass

    @abstractmethod
    def max(self, array: Any) -> float:
        pass

    @abstractmethod
    def cleanup_memory(self) -> None:
        pass


class NumpyBackend(TensorBackend):
    """NumPy tensor backend (CPU only)."""

    @property
    def name(self) -> str:
        return "numpy"

    @property
    def is_gpu(self) -> bool:
        return False

    def asarray(self, array: Any, dtype: Any = None) -> Any:
        return np.asarray(array, dtype=dtype)

    def asnumpy(self, array: Any) -> np.ndarray:
        return np.asarray(array)

    def fftn(self, array: Any) -> Any:
        return scipy.fft.fftn(array)

    def ifftn(self, array: Any) -> Any:
        return scipy.fft.ifftn(array)

    def abs(self, array: Any) -> Any:
        return np.abs(array)

    def conjugate(self, array: Any) -> Any:
        return np.conjugate(array)

    def max(self, array: Any) -> float:
        return float(np.max(array))

    def cleanup_memory(self) -> None:
        pass  # No GPU memory to clean up


class CupyBackend(TensorBackend):
    """CuPy tensor backend."""

    def __init__(self) -> None:
        try:
            import cupy as cp
        except ImportError:
            raise ImportError("CuPy not available")
        self.cp = cp
        try:
            # Fail early if there is no usable CUDA device
            _ = cp.sum(cp.array([1.0, 2.0, 3.0]))
            cp.cuda.Device().synchronize()
        except Exception as e:
            raise RuntimeError(f"CuPy available but CUDA operations failed: {e}") from e

    @property
    def name(self) -> str:
        return "cupy"

    @property
    def is_gpu(self) -> bool:
        return True

    def asarray(self, array: Any, dtype: Any = None) -> Any:
        return self.cp.asarray(array, dtype=dtype)

    def asnumpy(self, array: Any) -> np.ndarray:
        return self.cp.asnumpy(array)

    def fftn(self, array: Any) -> Any:
        return self.cp.fft.fftn(array)

    def ifftn(self, array: Any) -> Any:
        return self.cp.fft.ifftn(array)

    def abs(self, array: Any) -> Any:
        return self.cp.abs(array)

    def conjugate(self, array: Any) -> Any:
        return self.cp.conjugate(array)

    def max(self, array: Any) -> float:
        return float(self.cp.max(array))

    def cleanup_memory(self) -> None:
        self.cp.get_default_memory_pool().free_all_blocks()
        self.cp.get_default_pinned_memory_pool().free_all_blocks()


_BACKENDS = {
    "numpy": NumpyBackend,
    "cupy": CupyBackend,
}


def create_tensor_backend(engine: Optional[str] = None, allow_fallback: bool = True) -> TensorBackend:
    """Create a tensor backend with optional fallback to NumPy.

    Args:
        engine: Preferred engine ('cupy', 'numpy'), None for numpy
        allow_fallback: Whether to fall back to numpy if the preferred engine fails

    Returns:
        TensorBackend instance

    Raises:
        ValueError: If the engine name is unknown
        RuntimeError: If the engine cannot be initialized and fallback is disabled
    """
    engine = engine or "numpy"
    if engine not in _BACKENDS:
        raise ValueError(f"Unknown tensor backend: {engine!r}. Expected one of {sorted(_BACKENDS)}")

    try:
        backend = _BACKENDS[engine]()
    except (ImportError, RuntimeError) as e:
        if not allow_fallback or engine == "numpy":
            raise RuntimeError(f"Failed to initialize {engine} backend: {e}") from e
        warnings.warn(f"Failed to initialize {engine} backend: {e}. Falling back to numpy.")
        backend = NumpyBackend()

    logger.info(f"Using tensor backend: {backend.name} ({'GPU' if backend.is_gpu else 'CPU'})")
    return backend


# Global tensor backend instance
_tensor_backend: Optional[TensorBackend] = None


def get_tensor_backend() -> TensorBackend:
    """Get or create the global tensor backend instance."""
    global _tensor_backend
    if _tensor_backend is None:
        _tensor_backend = create_tensor_backend()
    return _tensor_backend
