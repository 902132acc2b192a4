"""
CPU linear-algebra kernels (NumPy).

`gemm_cpu` and `gemv_cpu` follow the reference BLAS argument lists
(column-major storage, leading dimensions, transpose flags) so operator code
can be written once against the BLAS contract and specialized per device.
`copy_cpu` is the element-wise copy primitive.
"""

from __future__ import annotations

from typing import Any

import numpy as np

from ...domain._errors import BackendFailureError, InvalidArgumentError
from ...domain.device._device import DeviceType
from ._blas_common import gemm_into, gemv_into
from ._registry import BACKEND_KERNELS


@BACKEND_KERNELS.register("gemm", DeviceType.CPU, "float32", "float64")
def gemm_cpu(
    context: Any,
    op_a: str,
    op_b: str,
    m: int,
    n: int,
    k: int,
    alpha: float,
    a: np.ndarray,
    lda: int,
    b: np.ndarray,
    ldb: int,
    beta: float,
    c: np.ndarray,
    ldc: int,
) -> None:
    """
    General matrix multiply on host buffers.

    Computes ``C = alpha * op(A) @ op(B) + beta * C`` where ``op(A)`` is
    ``m x k``, ``op(B)`` is ``k x n`` and ``C`` is ``m x n``.

    Parameters
    ----------
    context : Context
        Execution context (unused on CPU; kept for a uniform signature).
    op_a, op_b : str
        'n' for no transpose, 't' for transpose.
    m, n, k : int
        Problem size.
    alpha, beta : float
        Scalars. ``beta == 0`` overwrites C without reading it.
    a, b, c : np.ndarray
        Flat column-major buffers.
    lda, ldb, ldc : int
        Leading dimensions.

    Raises
    ------
    InvalidArgumentError
        On bad flags, leading dimensions or buffer sizes.
    BackendFailureError
        If NumPy fails during the product.
    """
    try:
        gemm_into(np, op_a, op_b, m, n, k, alpha, a, lda, b, ldb, beta, c, ldc)
    except (ValueError, FloatingPointError) as e:
        raise BackendFailureError(f"gemm: {e}") from e


@BACKEND_KERNELS.register("gemv", DeviceType.CPU, "float32", "float64")
def gemv_cpu(
    context: Any,
    op: str,
    m: int,
    n: int,
    alpha: float,
    a: np.ndarray,
    lda: int,
    x: np.ndarray,
    incx: int,
    beta: float,
    y: np.ndarray,
    incy: int,
) -> None:
    """
    Matrix-vector multiply on host buffers: ``y = alpha * op(A) @ x + beta * y``.

    ``A`` is stored as an ``m x n`` column-major matrix.
    """
    try:
        gemv_into(np, op, m, n, alpha, a, lda, x, incx, beta, y, incy)
    except (ValueError, FloatingPointError) as e:
        raise BackendFailureError(f"gemv: {e}") from e


@BACKEND_KERNELS.register("copy", DeviceType.CPU, "float32", "float64")
def copy_cpu(dest: np.ndarray, src: np.ndarray, count: int) -> None:
    """
    Copy the first ``count`` elements of ``src`` into ``dest``.

    Raises
    ------
    InvalidArgumentError
        If either buffer holds fewer than ``count`` elements.
    """
    if count < 0 or dest.size < count or src.size < count:
        raise InvalidArgumentError(
            f"copy: cannot copy {count} elements "
            f"(dest={int(dest.size)}, src={int(src.size)})"
        )
    dest[:count] = src[:count]
