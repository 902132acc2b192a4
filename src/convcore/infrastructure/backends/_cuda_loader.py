"""
Cached loader for the CUDA backend (CuPy).

The CUDA specializations of every kernel run on CuPy arrays. CuPy is an
optional dependency (``pip install convcore[cuda]``); this module resolves it
once per process and reports whether CUDA kernels can run.

Environment variables
---------------------
CONVCORE_DISABLE_CUDA : str, optional
    If set to "1", "true" or "yes", CuPy is never imported and every CUDA
    request fails with UNSUPPORTED.

Key behaviors
-------------
- Cached singleton: `load_cuda_backend()` is decorated with `lru_cache` so the
  import and the device probe happen at most once.
- Explicit degradation: when CuPy is missing or no device is visible, a
  `RuntimeWarning` is emitted once and the loader returns None.
"""

from __future__ import annotations

from functools import lru_cache
import os
import warnings
from types import ModuleType
from typing import Optional

from ...domain._errors import UnsupportedError

_FALSEY_DISABLE = ("", "0", "false", "no")


def cuda_disabled() -> bool:
    """Return True if ``CONVCORE_DISABLE_CUDA`` turns the backend off."""
    return (
        os.environ.get("CONVCORE_DISABLE_CUDA", "").strip().lower()
        not in _FALSEY_DISABLE
    )


@lru_cache(maxsize=1)
def load_cuda_backend() -> Optional[ModuleType]:
    """
    Import CuPy and check that at least one CUDA device is visible.

    Returns
    -------
    Optional[ModuleType]
        The ``cupy`` module, or None if the CUDA backend is unavailable.
    """
    if cuda_disabled():
        return None

    try:
        import cupy
    except ImportError as e:
        warnings.warn(
            "CuPy could not be imported; convcore CUDA kernels are unavailable. "
            f"Reason: {e}",
            RuntimeWarning,
            stacklevel=2,
        )
        return None

    try:
        n_devices = int(cupy.cuda.runtime.getDeviceCount())
    except cupy.cuda.runtime.CUDARuntimeError as e:
        warnings.warn(
            f"CUDA runtime is not usable; convcore CUDA kernels are unavailable. Reason: {e}",
            RuntimeWarning,
            stacklevel=2,
        )
        return None

    if n_devices == 0:
        warnings.warn(
            "No CUDA device is visible; convcore CUDA kernels are unavailable.",
            RuntimeWarning,
            stacklevel=2,
        )
        return None
    return cupy


def require_cuda_backend(op: str) -> ModuleType:
    """
    Return the ``cupy`` module or fail with UNSUPPORTED.

    Raises
    ------
    UnsupportedError
        If `load_cuda_backend()` found no usable backend.
    """
    cp = load_cuda_backend()
    if cp is None:
        raise UnsupportedError(op, "cuda (backend unavailable)")
    return cp
