"""
Per-placement bundle of backend primitives.

A `KernelSet` is what an operator specialization is instantiated with: the
gemm/gemv/copy and im2row kernels of exactly one ``(DeviceType, dtype)``
pair, looked up once at import time. Operator code calls ``kernels.gemm(...)``
without ever branching on the device.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Iterator, List, Tuple

from ...domain.device._device import DeviceType
from ._registry import BACKEND_KERNELS

# Importing the backend modules populates BACKEND_KERNELS.
from . import blas_cpu as _blas_cpu  # noqa: F401
from . import blas_cuda as _blas_cuda  # noqa: F401
from . import im2row_cpu as _im2row_cpu  # noqa: F401
from . import im2row_cuda as _im2row_cuda  # noqa: F401

SUPPORTED_PLACEMENTS: List[Tuple[DeviceType, str]] = [
    (DeviceType.CPU, "float32"),
    (DeviceType.CPU, "float64"),
    (DeviceType.CUDA, "float32"),
    (DeviceType.CUDA, "float64"),
]


@dataclass(frozen=True)
class KernelSet:
    """
    Backend primitives bound to one device kind and dtype.

    Attributes
    ----------
    device_type : DeviceType
        Device kind the primitives run on.
    dtype : str
        Element dtype name ("float32" or "float64").
    gemm, gemv : Callable
        BLAS-style products (see `blas_cpu`).
    copy : Callable
        Element-wise copy ``copy(dest, src, count)``.
    im2row_forward, im2row_backward : Callable
        Patch transform kernels (see `im2row_cpu`).
    """

    device_type: DeviceType
    dtype: str
    gemm: Callable
    gemv: Callable
    copy: Callable
    im2row_forward: Callable
    im2row_backward: Callable

    @classmethod
    def resolve(cls, device_type: DeviceType, dtype: str) -> "KernelSet":
        """
        Collect the registered primitives for one placement.

        Raises
        ------
        UnsupportedError
            If a primitive is missing for that placement.
        """
        return cls(
            device_type=device_type,
            dtype=dtype,
            gemm=BACKEND_KERNELS.resolve("gemm", device_type, dtype),
            gemv=BACKEND_KERNELS.resolve("gemv", device_type, dtype),
            copy=BACKEND_KERNELS.resolve("copy", device_type, dtype),
            im2row_forward=BACKEND_KERNELS.resolve("im2row_forward", device_type, dtype),
            im2row_backward=BACKEND_KERNELS.resolve("im2row_backward", device_type, dtype),
        )


def kernel_sets() -> Iterator[KernelSet]:
    """Yield a `KernelSet` for every supported placement."""
    for device_type, dtype in SUPPORTED_PLACEMENTS:
        yield KernelSet.resolve(device_type, dtype)
