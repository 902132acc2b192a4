"""
CUDA linear-algebra kernels (CuPy).

Same contract as `blas_cpu`, on CuPy buffers. Products go through CuPy's
matmul (cuBLAS); runtime failures are reported as BACKEND_FAILURE and the
absence of a usable CuPy as UNSUPPORTED.
"""

from __future__ import annotations

from typing import Any

from ...domain._errors import BackendFailureError, InvalidArgumentError
from ...domain.device._device import DeviceType
from ..backends._cuda_loader import require_cuda_backend
from ._blas_common import gemm_into, gemv_into
from ._registry import BACKEND_KERNELS


def _backend_errors(cp: Any) -> tuple:
    return (cp.cuda.runtime.CUDARuntimeError, ValueError)


@BACKEND_KERNELS.register("gemm", DeviceType.CUDA, "float32", "float64")
def gemm_cuda(
    context: Any,
    op_a: str,
    op_b: str,
    m: int,
    n: int,
    k: int,
    alpha: float,
    a: Any,
    lda: int,
    b: Any,
    ldb: int,
    beta: float,
    c: Any,
    ldc: int,
) -> None:
    """
    General matrix multiply on device buffers (see `blas_cpu.gemm_cpu`).
    """
    cp = require_cuda_backend("gemm")
    try:
        with cp.cuda.Device(c.device.id):
            gemm_into(cp, op_a, op_b, m, n, k, alpha, a, lda, b, ldb, beta, c, ldc)
    except _backend_errors(cp) as e:
        raise BackendFailureError(f"gemm: {e}") from e


@BACKEND_KERNELS.register("gemv", DeviceType.CUDA, "float32", "float64")
def gemv_cuda(
    context: Any,
    op: str,
    m: int,
    n: int,
    alpha: float,
    a: Any,
    lda: int,
    x: Any,
    incx: int,
    beta: float,
    y: Any,
    incy: int,
) -> None:
    """
    Matrix-vector multiply on device buffers (see `blas_cpu.gemv_cpu`).
    """
    cp = require_cuda_backend("gemv")
    try:
        with cp.cuda.Device(y.device.id):
            gemv_into(cp, op, m, n, alpha, a, lda, x, incx, beta, y, incy)
    except _backend_errors(cp) as e:
        raise BackendFailureError(f"gemv: {e}") from e


@BACKEND_KERNELS.register("copy", DeviceType.CUDA, "float32", "float64")
def copy_cuda(dest: Any, src: Any, count: int) -> None:
    """
    Device-to-device copy of the first ``count`` elements.
    """
    cp = require_cuda_backend("copy")
    if count < 0 or dest.size < count or src.size < count:
        raise InvalidArgumentError(
            f"copy: cannot copy {count} elements "
            f"(dest={int(dest.size)}, src={int(src.size)})"
        )
    try:
        with cp.cuda.Device(dest.device.id):
            dest[:count] = src[:count]
    except cp.cuda.runtime.CUDARuntimeError as e:
        raise BackendFailureError(f"copy: {e}") from e
