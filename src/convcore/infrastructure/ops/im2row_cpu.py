"""
CPU im2row / row2im kernels (NumPy).

These kernels convert between one volume of shape (width, height, depth) and
its patch matrix (see `domain._geometry` for the layout). They are the
building block used to lower convolution to a single GEMM per image.

Boundary handling
-----------------
Filling row ``(u, v, z)`` of the patch matrix means visiting every patch
``(x, y)``; the source pixel is

    x_data = x * stride_x + u * dilate_x - pad_left
    y_data = y * stride_y + v * dilate_y - pad_top

which lies inside the volume exactly for ``x`` in ``[x0, x1)`` and ``y`` in
``[y0, y1)`` with

    x0 = ceil((pad_left - u * dilate_x) / stride_x)
    x1 = floor((width - 1 + pad_left - u * dilate_x) / stride_x) + 1

(same for y), both clamped above by the number of patches. The bounds are
computed once per row; the interior is then copied as a single strided run
whose start offset is derived from ``(x0, y0)``, and the border is written as
zeros. No per-pixel bounds test is performed. ``x1 <= x0`` is possible for
large padding or dilation; such rows are all zeros.

Buffer conventions
------------------
``data`` is a flat buffer of ``geometry.volume_size`` elements (width fastest)
and ``stacked`` a flat buffer of ``geometry.stacked_size`` elements.
"""

from __future__ import annotations

from typing import Any, Tuple

import numpy as np

from ...domain._errors import InvalidArgumentError
from ...domain._geometry import PatchGeometry
from ...domain.device._device import DeviceType
from ._registry import BACKEND_KERNELS


def check_im2row_buffers(stacked: Any, data: Any, geometry: PatchGeometry) -> None:
    """
    Validate the geometry and the sizes of both buffers.

    Raises
    ------
    InvalidArgumentError
        If the geometry is degenerate or a buffer size does not match it.
    """
    geometry.validate()
    if int(data.size) != geometry.volume_size:
        raise InvalidArgumentError(
            f"im2row: volume buffer has {int(data.size)} elements, "
            f"geometry needs {geometry.volume_size}"
        )
    if int(stacked.size) != geometry.stacked_size:
        raise InvalidArgumentError(
            f"im2row: patch buffer has {int(stacked.size)} elements, "
            f"geometry needs {geometry.stacked_size}"
        )


def _interior(
    geometry: PatchGeometry, row: int
) -> Tuple[int, int, int, int, int, int, int]:
    """
    Return ``(z, xs, x1, ys, y1, x_data, y_data)`` for one row.

    ``xs = max(0, x0)`` and ``ys = max(0, y0)`` are where the in-bounds scan
    starts; ``(x_data, y_data)`` is the source pixel of patch ``(xs, ys)``.
    """
    g = geometry
    u, v, z = g.row_offset(row)
    x0, x1 = g.valid_range_x(u)
    y0, y1 = g.valid_range_y(v)
    xs = max(0, x0)
    ys = max(0, y0)
    x_data = xs * g.stride_x + u * g.dilate_x - g.pad_left
    y_data = ys * g.stride_y + v * g.dilate_y - g.pad_top
    return z, xs, x1, ys, y1, x_data, y_data


@BACKEND_KERNELS.register("im2row_forward", DeviceType.CPU, "float32", "float64")
def im2row_forward_cpu(stacked: np.ndarray, data: np.ndarray, geometry: PatchGeometry) -> None:
    """
    Extract the patch matrix of one volume into ``stacked``.

    Parameters
    ----------
    stacked : np.ndarray
        Output buffer, ``geometry.stacked_size`` elements, fully overwritten.
    data : np.ndarray
        Source volume, ``geometry.volume_size`` elements.
    geometry : PatchGeometry
        Sampling geometry.

    Raises
    ------
    InvalidArgumentError
        If the geometry or buffer sizes are invalid.
    """
    check_im2row_buffers(stacked, data, geometry)
    g = geometry
    npx, npy = g.num_patches_x, g.num_patches_y
    if g.stacked_size == 0:
        return

    volume = data.reshape(g.depth, g.height, g.width)
    rows = stacked.reshape(g.num_rows, npy, npx)

    for row in range(g.num_rows):
        block = rows[row]
        z, xs, x1, ys, y1, x_data, y_data = _interior(g, row)

        if x1 <= xs or y1 <= ys:
            block[...] = 0
            continue

        block[:ys, :] = 0
        block[y1:, :] = 0
        block[ys:y1, :xs] = 0
        block[ys:y1, x1:] = 0

        ny, nx = y1 - ys, x1 - xs
        block[ys:y1, xs:x1] = volume[
            z,
            y_data : y_data + (ny - 1) * g.stride_y + 1 : g.stride_y,
            x_data : x_data + (nx - 1) * g.stride_x + 1 : g.stride_x,
        ]


@BACKEND_KERNELS.register("im2row_backward", DeviceType.CPU, "float32", "float64")
def im2row_backward_cpu(data: np.ndarray, stacked: np.ndarray, geometry: PatchGeometry) -> None:
    """
    Scatter-accumulate a patch matrix back into one volume (row2im).

    ``data`` is zero-filled first; every in-bounds entry of ``stacked`` is then
    added to its source voxel, so overlapping patches sum. Entries that fall
    into the padding contribute nothing. This is the adjoint of
    `im2row_forward_cpu`.

    Raises
    ------
    InvalidArgumentError
        If the geometry or buffer sizes are invalid.
    """
    check_im2row_buffers(stacked, data, geometry)
    g = geometry
    data[...] = 0
    if g.stacked_size == 0:
        return

    volume = data.reshape(g.depth, g.height, g.width)
    rows = stacked.reshape(g.num_rows, g.num_patches_y, g.num_patches_x)

    for row in range(g.num_rows):
        z, xs, x1, ys, y1, x_data, y_data = _interior(g, row)
        if x1 <= xs or y1 <= ys:
            continue

        ny, nx = y1 - ys, x1 - xs
        volume[
            z,
            y_data : y_data + (ny - 1) * g.stride_y + 1 : g.stride_y,
            x_data : x_data + (nx - 1) * g.stride_x + 1 : g.stride_x,
        ] += rows[row, ys:y1, xs:x1]


def patch_extract(data: np.ndarray, geometry: PatchGeometry) -> np.ndarray:
    """
    Return the patch matrix of a host volume as a new array.

    Parameters
    ----------
    data : np.ndarray
        Volume with ``geometry.volume_size`` elements in (depth, height, width)
        C order (any shape with that many elements is accepted).
    geometry : PatchGeometry
        Sampling geometry.

    Returns
    -------
    np.ndarray
        Array of shape ``(num_rows, num_patches_y, num_patches_x)``.
    """
    src = np.ascontiguousarray(data).reshape(-1)
    geometry.validate()
    out = np.empty(geometry.stacked_size, dtype=src.dtype)
    im2row_forward_cpu(out, src, geometry)
    return out.reshape(geometry.num_rows, geometry.num_patches_y, geometry.num_patches_x)


def patch_accumulate(stacked: np.ndarray, geometry: PatchGeometry) -> np.ndarray:
    """
    Return the volume obtained by scatter-accumulating a host patch matrix.

    Returns
    -------
    np.ndarray
        Array of shape ``(depth, height, width)``.
    """
    src = np.ascontiguousarray(stacked).reshape(-1)
    geometry.validate()
    out = np.empty(geometry.volume_size, dtype=src.dtype)
    im2row_backward_cpu(out, src, geometry)
    return out.reshape(geometry.depth, geometry.height, geometry.width)
