"""
CUDA im2row / row2im kernels (CuPy elementwise kernels).

Same contract and buffer conventions as `im2row_cpu`.

- forward: one thread per patch-matrix entry; each thread decodes its
  ``(u, v, z, x, y)`` coordinates and gathers one source pixel (or zero).
- backward: one thread per volume element; each thread enumerates the window
  taps that can sample it and sums the matching patch-matrix entries. Every
  output is written by exactly one thread, so no atomics are needed and the
  result is the same scatter-accumulation as the CPU kernel.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Any

from ...domain._errors import BackendFailureError
from ...domain._geometry import PatchGeometry
from ...domain.device._device import DeviceType
from ..backends._cuda_loader import require_cuda_backend
from ._registry import BACKEND_KERNELS
from .im2row_cpu import check_im2row_buffers

_PARAMS = (
    "int32 width, int32 height, int32 numPatchesX, int32 numPatchesY, "
    "int32 windowWidth, int32 windowHeight, int32 strideX, int32 strideY, "
    "int32 padLeft, int32 padTop, int32 dilateX, int32 dilateY"
)

_FORWARD_BODY = """
    int x = i % numPatchesX;
    int y = (i / numPatchesX) % numPatchesY;
    int row = i / (numPatchesX * numPatchesY);
    int u = row % windowWidth;
    int v = (row / windowWidth) % windowHeight;
    int z = row / (windowWidth * windowHeight);

    int x_data = x * strideX + u * dilateX - padLeft;
    int y_data = y * strideY + v * dilateY - padTop;

    if (x_data >= 0 && x_data < width && y_data >= 0 && y_data < height) {
        stacked = data[(z * height + y_data) * width + x_data];
    } else {
        stacked = 0;
    }
"""

_BACKWARD_BODY = """
    int x_data = i % width;
    int y_data = (i / width) % height;
    int z = i / (width * height);
    int numPatches = numPatchesX * numPatchesY;
    T acc = 0;

    for (int v = 0; v < windowHeight; ++v) {
        int ny = y_data + padTop - v * dilateY;
        if (ny < 0 || ny % strideY != 0) continue;
        int y = ny / strideY;
        if (y >= numPatchesY) continue;
        for (int u = 0; u < windowWidth; ++u) {
            int nx = x_data + padLeft - u * dilateX;
            if (nx < 0 || nx % strideX != 0) continue;
            int x = nx / strideX;
            if (x >= numPatchesX) continue;
            int row = u + windowWidth * (v + windowHeight * z);
            acc += stacked[row * numPatches + y * numPatchesX + x];
        }
    }
    data = acc;
"""


@lru_cache(maxsize=1)
def _forward_kernel() -> Any:
    cp = require_cuda_backend("im2row_forward")
    return cp.ElementwiseKernel(
        "raw T data, " + _PARAMS,
        "T stacked",
        _FORWARD_BODY,
        "convcore_im2row_forward",
    )


@lru_cache(maxsize=1)
def _backward_kernel() -> Any:
    cp = require_cuda_backend("im2row_backward")
    return cp.ElementwiseKernel(
        "raw T stacked, " + _PARAMS,
        "T data",
        _BACKWARD_BODY,
        "convcore_im2row_backward",
    )


def _launch_args(g: PatchGeometry) -> tuple:
    return (
        g.width,
        g.height,
        g.num_patches_x,
        g.num_patches_y,
        g.window_width,
        g.window_height,
        g.stride_x,
        g.stride_y,
        g.pad_left,
        g.pad_top,
        g.dilate_x,
        g.dilate_y,
    )


@BACKEND_KERNELS.register("im2row_forward", DeviceType.CUDA, "float32", "float64")
def im2row_forward_cuda(stacked: Any, data: Any, geometry: PatchGeometry) -> None:
    """
    Extract the patch matrix of one device volume into ``stacked``.

    Raises
    ------
    InvalidArgumentError
        If the geometry or buffer sizes are invalid.
    BackendFailureError
        If the kernel launch fails.
    """
    check_im2row_buffers(stacked, data, geometry)
    if geometry.stacked_size == 0:
        return
    cp = require_cuda_backend("im2row_forward")
    try:
        with cp.cuda.Device(stacked.device.id):
            _forward_kernel()(data, *_launch_args(geometry), stacked)
    except cp.cuda.runtime.CUDARuntimeError as e:
        raise BackendFailureError(f"im2row_forward: {e}") from e


@BACKEND_KERNELS.register("im2row_backward", DeviceType.CUDA, "float32", "float64")
def im2row_backward_cuda(data: Any, stacked: Any, geometry: PatchGeometry) -> None:
    """
    Accumulate a device patch matrix back into one volume (row2im).

    Raises
    ------
    InvalidArgumentError
        If the geometry or buffer sizes are invalid.
    BackendFailureError
        If the kernel launch fails.
    """
    check_im2row_buffers(stacked, data, geometry)
    cp = require_cuda_backend("im2row_backward")
    try:
        with cp.cuda.Device(data.device.id):
            if geometry.stacked_size == 0:
                data.fill(0)
                return
            _backward_kernel()(stacked, *_launch_args(geometry), data)
    except cp.cuda.runtime.CUDARuntimeError as e:
        raise BackendFailureError(f"im2row_backward: {e}") from e
