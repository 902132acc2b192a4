"""
2-D convolution lowered to im2row + GEMM.

For each item of the batch the input volume is expanded into its patch matrix
(``P`` patches by ``K = fw * fh * depth`` rows, stored so that it reads as a
column-major ``P x K`` matrix), and the output is one product with the filter
bank viewed as a ``K x F`` matrix:

    out_i[P, F] = stacked_i[P, K] @ filter[K, F] (+ ones[P] bias[F]^T)

The output of item ``i`` therefore has shape ``(npx, npy, F)``, which is the
layout of a `Tensor` item. The patch matrix lives in the context workspace and
is reused across items and calls.

The backward pass recomputes the patch matrix of each item and sums the
filter and bias derivatives over the batch (the first item overwrites them,
an empty batch zeroes them):

    d_filter += stacked_i^T @ d_out_i
    d_bias   += d_out_i^T @ ones
    d_data_i  = row2im(d_out_i @ filter^T)

Filter depth must equal the data depth (grouped convolution is not
supported). The window is applied without flipping (cross-correlation).
"""

from __future__ import annotations

from functools import partial
from typing import Tuple

from ...domain._errors import ErrorCode, InvalidArgumentError
from ...domain._geometry import PatchGeometry
from ...domain.utils._kernel_dispatch import create_kernel_builder
from ..context._context import Context
from ..ops.kernel_set import KernelSet, kernel_sets
from ..tensor._tensor import Tensor

kernel = create_kernel_builder()

_ABSENT = Tensor.empty()


class Convolution:
    """
    Convolution descriptor: stride, padding and dilation of the window.

    Parameters
    ----------
    context : Context
        Provides the patch-matrix workspace and the all-ones vector.
    stride : tuple[int, int]
        (stride_x, stride_y).
    pad : tuple[int, int, int, int]
        (left, right, top, bottom) zero padding.
    dilate : tuple[int, int]
        (dilate_x, dilate_y).
    """

    def __init__(
        self,
        context: Context,
        stride: Tuple[int, int] = (1, 1),
        pad: Tuple[int, int, int, int] = (0, 0, 0, 0),
        dilate: Tuple[int, int] = (1, 1),
    ) -> None:
        self._context = context
        self.stride = (int(stride[0]), int(stride[1]))
        self.pad = tuple(int(p) for p in pad)
        self.dilate = (int(dilate[0]), int(dilate[1]))

    @property
    def context(self) -> Context:
        return self._context

    def geometry(self, data: Tensor, filter: Tensor) -> PatchGeometry:
        """Return the patch geometry of one item of ``data`` under ``filter``."""
        return PatchGeometry.from_window(
            (data.width, data.height, data.depth),
            (filter.width, filter.height),
            stride=self.stride,
            pad=self.pad,
            dilate=self.dilate,
        )

    def output_shape(self, data: Tensor, filter: Tensor) -> Tuple[int, int, int, int]:
        """
        Return ``(npx, npy, num_filters, n)`` for the given operands.

        Raises
        ------
        InvalidArgumentError
            If the geometry is invalid.
        """
        g = self.geometry(data, filter)
        g.validate()
        return g.num_patches_x, g.num_patches_y, filter.size, data.size

    def forward(
        self,
        output: Tensor,
        data: Tensor,
        filter: Tensor,
        bias: Tensor = _ABSENT,
    ) -> ErrorCode:
        """
        Convolve ``data`` with ``filter`` and add ``bias``.

        Parameters
        ----------
        output : Tensor
            Shape ``output_shape(data, filter)``; fully overwritten.
        data : Tensor
            Input batch ``(w, h, d, n)``.
        filter : Tensor
            Filter bank ``(fw, fh, d, F)``.
        bias : Tensor, optional
            ``F`` values.

        Returns
        -------
        ErrorCode
        """
        raise NotImplementedError  # replaced by the dispatch wrapper

    def backward(
        self,
        d_data: Tensor,
        d_filter: Tensor,
        d_bias: Tensor,
        data: Tensor,
        filter: Tensor,
        d_output: Tensor,
    ) -> ErrorCode:
        """
        Compute the requested derivatives; pass `Tensor.empty()` to skip one.

        Returns
        -------
        ErrorCode
        """
        raise NotImplementedError  # replaced by the dispatch wrapper


def _check_operands(conv: Convolution, data: Tensor, filter: Tensor) -> PatchGeometry:
    if not data or not filter:
        raise InvalidArgumentError("data and filter are required")
    if filter.depth != data.depth:
        raise InvalidArgumentError(
            f"filter depth {filter.depth} != data depth {data.depth} "
            "(grouped convolution is not supported)"
        )
    geometry = conv.geometry(data, filter)
    geometry.validate()
    return geometry


def _check_output(name: str, t: Tensor, geometry: PatchGeometry, data: Tensor, filter: Tensor) -> None:
    expected = (geometry.num_patches_x, geometry.num_patches_y, filter.size, data.size)
    if t.shape != expected:
        raise InvalidArgumentError(f"{name} has shape {t.shape}, expected {expected}")


def _forward(
    self: Convolution,
    output: Tensor,
    data: Tensor,
    filter: Tensor,
    bias: Tensor = _ABSENT,
    *,
    kernels: KernelSet,
) -> None:
    g = _check_operands(self, data, filter)
    if not output:
        raise InvalidArgumentError("output is required")
    _check_output("output", output, g, data, filter)
    F = filter.size
    if bias and bias.num_elements != F:
        raise InvalidArgumentError(f"bias has {bias.num_elements} elements, expected {F}")

    ctx = self.context
    P, K = g.num_patches, g.num_rows
    ld = max(1, P)
    stacked = ctx.get_workspace(data.device, kernels.dtype, g.stacked_size)
    ones = ctx.get_all_ones(output.device, kernels.dtype, P) if bias else None

    for i in range(data.size):
        out_i = output.item(i)
        kernels.im2row_forward(stacked, data.item(i), g)
        kernels.gemm(
            ctx, "n", "n", P, F, K,
            1.0, stacked, ld,
            filter.data, K,
            0.0, out_i, ld,
        )  # fmt: skip
        if bias:
            kernels.gemm(
                ctx, "n", "n", P, F, 1,
                1.0, ones, ld,
                bias.data, 1,
                1.0, out_i, ld,
            )  # fmt: skip


def _backward(
    self: Convolution,
    d_data: Tensor,
    d_filter: Tensor,
    d_bias: Tensor,
    data: Tensor,
    filter: Tensor,
    d_output: Tensor,
    *,
    kernels: KernelSet,
) -> None:
    g = _check_operands(self, data, filter)
    if not d_output:
        raise InvalidArgumentError("d_output is required")
    _check_output("d_output", d_output, g, data, filter)
    F = filter.size
    if d_data and d_data.shape != data.shape:
        raise InvalidArgumentError("d_data must match data")
    if d_filter and d_filter.shape != filter.shape:
        raise InvalidArgumentError("d_filter must match filter")
    if d_bias and d_bias.num_elements != F:
        raise InvalidArgumentError(f"d_bias has {d_bias.num_elements} elements, expected {F}")

    ctx = self.context
    P, K = g.num_patches, g.num_rows
    ld = max(1, P)
    stacked = ctx.get_workspace(data.device, kernels.dtype, g.stacked_size)
    ones = ctx.get_all_ones(d_bias.device, kernels.dtype, P) if d_bias else None

    if data.size == 0:
        # the sum over an empty batch is zero
        for t in (d_filter, d_bias):
            if t:
                t.data.fill(0)
        return

    for i in range(data.size):
        d_out_i = d_output.item(i)
        beta = 0.0 if i == 0 else 1.0

        if d_filter:
            kernels.im2row_forward(stacked, data.item(i), g)
            kernels.gemm(
                ctx, "t", "n", K, F, P,
                1.0, stacked, ld,
                d_out_i, ld,
                beta, d_filter.data, K,
            )  # fmt: skip

        if d_bias:
            kernels.gemv(ctx, "t", P, F, 1.0, d_out_i, ld, ones, 1, beta, d_bias.data, 1)

        if d_data:
            kernels.gemm(
                ctx, "n", "t", P, K, F,
                1.0, d_out_i, ld,
                filter.data, K,
                0.0, stacked, ld,
            )  # fmt: skip
            kernels.im2row_backward(d_data.item(i), stacked, g)


for _kernels in kernel_sets():
    kernel(Convolution, Convolution.forward, _kernels.device_type, _kernels.dtype)(
        partial(_forward, kernels=_kernels)
    )
    kernel(Convolution, Convolution.backward, _kernels.device_type, _kernels.dtype)(
        partial(_backward, kernels=_kernels)
    )
