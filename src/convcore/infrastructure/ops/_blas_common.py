"""
BLAS-convention helpers shared by the CPU and CUDA linear-algebra kernels.

Matrices are column-major views into flat buffers: element ``(i, j)`` of a
``rows x cols`` matrix with leading dimension ``ld`` lives at
``buf[i + j * ld]``. Vectors are strided: element ``i`` lives at
``buf[i * inc]``.

The helpers build array views with `as_strided`, so results written into the
view land in the caller's buffer.
"""

from __future__ import annotations

from types import ModuleType
from typing import Any

from ...domain._errors import InvalidArgumentError


def check_op(op: str, name: str) -> bool:
    """
    Validate a transpose flag and return True if it requests a transpose.
    """
    if op in ("n", "N"):
        return False
    if op in ("t", "T"):
        return True
    raise InvalidArgumentError(f"{name}: transpose flag must be 'n' or 't', got {op!r}")


def matrix_view(
    xp: ModuleType, buf: Any, rows: int, cols: int, ld: int, name: str
) -> Any:
    """
    Return a ``(rows, cols)`` view of a column-major matrix stored in ``buf``.

    Raises
    ------
    InvalidArgumentError
        If ``ld < max(1, rows)`` or the buffer is too small.
    """
    if rows < 0 or cols < 0:
        raise InvalidArgumentError(f"{name}: negative matrix size {rows}x{cols}")
    if ld < max(1, rows):
        raise InvalidArgumentError(f"{name}: leading dimension {ld} < {max(1, rows)}")
    if buf.ndim != 1:
        raise InvalidArgumentError(f"{name}: buffer must be 1-D")
    if rows == 0 or cols == 0:
        return buf[:0].reshape(rows, cols)
    needed = (cols - 1) * ld + rows
    if buf.size < needed:
        raise InvalidArgumentError(
            f"{name}: buffer has {int(buf.size)} elements, {needed} required"
        )
    itemsize = buf.dtype.itemsize
    return xp.lib.stride_tricks.as_strided(
        buf, shape=(rows, cols), strides=(itemsize, ld * itemsize)
    )


def vector_view(buf: Any, length: int, inc: int, name: str) -> Any:
    """
    Return a view of ``length`` elements of ``buf`` spaced by ``inc``.

    Raises
    ------
    InvalidArgumentError
        If ``inc`` is not positive or the buffer is too small.
    """
    if inc <= 0:
        raise InvalidArgumentError(f"{name}: increment must be positive, got {inc}")
    if length == 0:
        return buf[:0]
    needed = (length - 1) * inc + 1
    if buf.size < needed:
        raise InvalidArgumentError(
            f"{name}: buffer has {int(buf.size)} elements, {needed} required"
        )
    return buf[:needed:inc]


def gemm_into(
    xp: ModuleType,
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
    ``C <- alpha * op(A) @ op(B) + beta * C`` on column-major views.

    With ``beta == 0`` the previous contents of C are not read.
    """
    trans_a = check_op(op_a, "gemm")
    trans_b = check_op(op_b, "gemm")

    A = matrix_view(xp, a, k if trans_a else m, m if trans_a else k, lda, "gemm A")
    B = matrix_view(xp, b, n if trans_b else k, k if trans_b else n, ldb, "gemm B")
    C = matrix_view(xp, c, m, n, ldc, "gemm C")
    if m == 0 or n == 0:
        return

    if k == 0:
        prod = xp.zeros((m, n), dtype=C.dtype)
    else:
        prod = (A.T if trans_a else A) @ (B.T if trans_b else B)
    if alpha != 1:
        prod *= alpha

    if beta == 0:
        C[...] = prod
    else:
        if beta != 1:
            C *= beta
        C += prod


def gemv_into(
    xp: ModuleType,
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
    ``y <- alpha * op(A) @ x + beta * y`` where A is stored ``m x n``.
    """
    trans = check_op(op, "gemv")
    A = matrix_view(xp, a, m, n, lda, "gemv A")
    X = vector_view(x, m if trans else n, incx, "gemv x")
    Y = vector_view(y, n if trans else m, incy, "gemv y")
    if Y.size == 0:
        return

    if X.size == 0:
        prod = xp.zeros(Y.shape, dtype=Y.dtype)
    else:
        prod = (A.T if trans else A) @ X
    if alpha != 1:
        prod *= alpha

    if beta == 0:
        Y[...] = prod
    else:
        if beta != 1:
            Y *= beta
        Y += prod
