"""
Fully-connected (affine) operator.

`FullyConnected` projects a batch of ``n`` volumes of ``V = w * h * d``
elements onto ``m`` filters of the same volume:

    output[m, n] = filter[V, m]^T @ input[V, n] + bias[m] 1[n]^T

All matrices are column-major views of the tensors' flat buffers, so item
``j`` of the batch is column ``j``. The operator is written once against the
BLAS contract (gemm/gemv/copy) and instantiated for every supported
``(DeviceType, dtype)`` pair; the call is routed by the placement of its
tensor arguments.

Optional operands
-----------------
- no filter: the layer is the identity (``output`` is a copy of ``input``);
- no bias: nothing is added;
- backward outputs (``d_input``, ``d_filter``, ``d_bias``) are computed only
  when present, each independently of the others.

Every public method returns an `ErrorCode`; on failure, outputs already
written are left as they are and must be discarded by the caller.
"""

from __future__ import annotations

from functools import partial

from ...domain._errors import ErrorCode, InvalidArgumentError
from ...domain.utils._kernel_dispatch import create_kernel_builder
from ..context._context import Context
from ..ops.kernel_set import KernelSet, kernel_sets
from ..tensor._tensor import Tensor

kernel = create_kernel_builder()

_ABSENT = Tensor.empty()


class FullyConnected:
    """
    Fully-connected operator bound to an execution context.

    Parameters
    ----------
    context : Context
        Provides the all-ones vector used for bias broadcast/reduction and
        records the last error.

    Notes
    -----
    The descriptor holds no per-call state and may be reused for any number of
    forward/backward calls.
    """

    def __init__(self, context: Context) -> None:
        self._context = context

    @property
    def context(self) -> Context:
        return self._context

    def forward(
        self,
        output: Tensor,
        input: Tensor,
        filter: Tensor = _ABSENT,
        bias: Tensor = _ABSENT,
    ) -> ErrorCode:
        """
        Compute ``output = filter^T input + bias``.

        Parameters
        ----------
        output : Tensor
            Result, ``m * n`` elements (``m`` filters, ``n = input.size``), or
            as many elements as ``input`` when no filter is given.
        input : Tensor
            Batch of shape ``(w, h, d, n)``.
        filter : Tensor, optional
            Shape ``(w, h, d, m)``: ``m`` filters with the volume of one input.
        bias : Tensor, optional
            One value per output row.

        Returns
        -------
        ErrorCode
            SUCCESS, or the failure of the first step that went wrong.
        """
        raise NotImplementedError  # replaced by the dispatch wrapper

    def backward(
        self,
        d_input: Tensor,
        d_filter: Tensor,
        d_bias: Tensor,
        input: Tensor,
        filter: Tensor,
        d_output: Tensor,
    ) -> ErrorCode:
        """
        Compute the requested derivatives of the projection.

        Parameters
        ----------
        d_input, d_filter, d_bias : Tensor
            Outputs; pass `Tensor.empty()` to skip one.
        input, filter : Tensor
            Operands of the forward pass (``filter`` may be empty).
        d_output : Tensor
            Derivative of the forward output.

        Returns
        -------
        ErrorCode
            SUCCESS, or the failure of the first step that went wrong.
        """
        raise NotImplementedError  # replaced by the dispatch wrapper


def _check_forward(output: Tensor, input: Tensor, filter: Tensor, bias: Tensor) -> int:
    if not input or not output:
        raise InvalidArgumentError("input and output are required")
    n = input.size
    if filter:
        if filter.volume != input.volume:
            raise InvalidArgumentError(
                f"filter volume {filter.volume} != input volume {input.volume}"
            )
        rows = filter.size
    else:
        rows = input.volume
    if output.num_elements != rows * n:
        raise InvalidArgumentError(
            f"output has {output.num_elements} elements, expected {rows * n}"
        )
    if bias and bias.num_elements != rows:
        raise InvalidArgumentError(
            f"bias has {bias.num_elements} elements, expected {rows}"
        )
    return rows


def _forward(
    self: FullyConnected,
    output: Tensor,
    input: Tensor,
    filter: Tensor = _ABSENT,
    bias: Tensor = _ABSENT,
    *,
    kernels: KernelSet,
) -> None:
    rows = _check_forward(output, input, filter, bias)
    ctx = self.context
    V = input.volume
    n = input.size

    if filter:
        m = filter.size
        if n == 1:
            kernels.gemv(
                ctx, "t", V, m, 1.0, filter.data, V, input.data, 1, 0.0, output.data, 1
            )
        else:
            kernels.gemm(
                ctx, "t", "n", m, n, V,
                1.0, filter.data, V,
                input.data, V,
                0.0, output.data, m,
            )  # fmt: skip
    else:
        kernels.copy(output.data, input.data, input.num_elements)

    if bias:
        ones = ctx.get_all_ones(output.device, kernels.dtype, n)
        kernels.gemm(
            ctx, "n", "n", rows, n, 1,
            1.0, bias.data, rows,
            ones, 1,
            1.0, output.data, rows,
        )  # fmt: skip


def _check_backward(
    d_input: Tensor,
    d_filter: Tensor,
    d_bias: Tensor,
    input: Tensor,
    filter: Tensor,
    d_output: Tensor,
) -> int:
    if not input or not d_output:
        raise InvalidArgumentError("input and d_output are required")
    n = input.size
    rows = filter.size if filter else input.volume
    if filter and filter.volume != input.volume:
        raise InvalidArgumentError(
            f"filter volume {filter.volume} != input volume {input.volume}"
        )
    if d_output.num_elements != rows * n:
        raise InvalidArgumentError(
            f"d_output has {d_output.num_elements} elements, expected {rows * n}"
        )
    if d_input and d_input.num_elements != input.num_elements:
        raise InvalidArgumentError("d_input must match input")
    if d_filter:
        if not filter:
            raise InvalidArgumentError("d_filter requested without a filter")
        if d_filter.num_elements != filter.num_elements:
            raise InvalidArgumentError("d_filter must match filter")
    if d_bias and d_bias.num_elements != rows:
        raise InvalidArgumentError(
            f"d_bias has {d_bias.num_elements} elements, expected {rows}"
        )
    return rows


def _backward(
    self: FullyConnected,
    d_input: Tensor,
    d_filter: Tensor,
    d_bias: Tensor,
    input: Tensor,
    filter: Tensor,
    d_output: Tensor,
    *,
    kernels: KernelSet,
) -> None:
    rows = _check_backward(d_input, d_filter, d_bias, input, filter, d_output)
    ctx = self.context
    V = input.volume
    n = input.size

    if filter:
        m = filter.size
        if d_filter:
            kernels.gemm(
                ctx, "n", "t", V, m, n,
                1.0, input.data, V,
                d_output.data, m,
                0.0, d_filter.data, V,
            )  # fmt: skip
        if d_input:
            kernels.gemm(
                ctx, "n", "n", V, n, m,
                1.0, filter.data, V,
                d_output.data, m,
                0.0, d_input.data, V,
            )  # fmt: skip
    elif d_input:
        kernels.copy(d_input.data, d_output.data, d_output.num_elements)

    if d_bias:
        ones = ctx.get_all_ones(d_bias.device, kernels.dtype, n)
        kernels.gemv(
            ctx, "n", rows, n, 1.0, d_output.data, rows, ones, 1, 0.0, d_bias.data, 1
        )


for _kernels in kernel_sets():
    kernel(FullyConnected, FullyConnected.forward, _kernels.device_type, _kernels.dtype)(
        partial(_forward, kernels=_kernels)
    )
    kernel(FullyConnected, FullyConnected.backward, _kernels.device_type, _kernels.dtype)(
        partial(_backward, kernels=_kernels)
    )
