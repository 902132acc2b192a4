"""
Batched patch transform operator.

`Im2Row` applies the per-volume im2row / row2im kernels to every item of a
batch. Item ``i`` of ``data`` (shape ``(w, h, d, n)``) maps to the ``i``-th
consecutive patch matrix of ``stacked``, which therefore holds
``n * geometry.stacked_size`` elements (its declared shape is not
interpreted beyond that count).
"""

from __future__ import annotations

from functools import partial

from ...domain._errors import ErrorCode, InvalidArgumentError
from ...domain._geometry import PatchGeometry
from ...domain.utils._kernel_dispatch import create_kernel_builder
from ..context._context import Context
from ..ops.kernel_set import KernelSet, kernel_sets
from ..tensor._tensor import Tensor

kernel = create_kernel_builder()


class Im2Row:
    """
    Patch extraction / accumulation over a batch of volumes.

    Parameters
    ----------
    context : Context
        Records the last error of a call.
    """

    def __init__(self, context: Context) -> None:
        self._context = context

    @property
    def context(self) -> Context:
        return self._context

    def forward(self, stacked: Tensor, data: Tensor, geometry: PatchGeometry) -> ErrorCode:
        """
        Extract the patch matrix of every item of ``data`` into ``stacked``.

        Parameters
        ----------
        stacked : Tensor
            Output, ``data.size * geometry.stacked_size`` elements.
        data : Tensor
            Input batch; its (width, height, depth) must match ``geometry``.
        geometry : PatchGeometry
            Sampling geometry of one volume.

        Returns
        -------
        ErrorCode
            SUCCESS, or INVALID_ARGUMENT for an inconsistent geometry/buffers.
        """
        raise NotImplementedError  # replaced by the dispatch wrapper

    def backward(self, data: Tensor, stacked: Tensor, geometry: PatchGeometry) -> ErrorCode:
        """
        Accumulate every patch matrix of ``stacked`` back into ``data``.

        ``data`` is overwritten (not added to).
        """
        raise NotImplementedError  # replaced by the dispatch wrapper


def check_batch(stacked: Tensor, data: Tensor, geometry: PatchGeometry) -> None:
    """
    Validate a batched patch transform before any buffer is touched.

    Raises
    ------
    InvalidArgumentError
        If a tensor is missing, the geometry is invalid or does not describe
        ``data``, or ``stacked`` has the wrong number of elements.
    """
    if not stacked or not data:
        raise InvalidArgumentError("stacked and data are required")
    geometry.validate()
    if (data.width, data.height, data.depth) != (
        geometry.width,
        geometry.height,
        geometry.depth,
    ):
        raise InvalidArgumentError(
            f"data volume {data.shape[:3]} does not match geometry "
            f"({geometry.width}, {geometry.height}, {geometry.depth})"
        )
    expected = geometry.stacked_size * data.size
    if stacked.num_elements != expected:
        raise InvalidArgumentError(
            f"stacked has {stacked.num_elements} elements, expected {expected}"
        )


def _stacked_item(stacked: Tensor, geometry: PatchGeometry, index: int):
    s = geometry.stacked_size
    return stacked.data[index * s : (index + 1) * s]


def _forward(
    self: Im2Row,
    stacked: Tensor,
    data: Tensor,
    geometry: PatchGeometry,
    *,
    kernels: KernelSet,
) -> None:
    check_batch(stacked, data, geometry)
    for i in range(data.size):
        kernels.im2row_forward(_stacked_item(stacked, geometry, i), data.item(i), geometry)


def _backward(
    self: Im2Row,
    data: Tensor,
    stacked: Tensor,
    geometry: PatchGeometry,
    *,
    kernels: KernelSet,
) -> None:
    check_batch(stacked, data, geometry)
    for i in range(data.size):
        kernels.im2row_backward(data.item(i), _stacked_item(stacked, geometry, i), geometry)


for _kernels in kernel_sets():
    kernel(Im2Row, Im2Row.forward, _kernels.device_type, _kernels.dtype)(
        partial(_forward, kernels=_kernels)
    )
    kernel(Im2Row, Im2Row.backward, _kernels.device_type, _kernels.dtype)(
        partial(_backward, kernels=_kernels)
    )
