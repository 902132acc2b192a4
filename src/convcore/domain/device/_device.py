"""
Compute-device descriptors for convcore.

Operators in convcore are specialized along two independent axes: the kind of
device that owns the tensor memory and the numeric type of its elements. This
module models the first axis.

- `DeviceType`: the device *kind* used as a dispatch key (CPU or CUDA)
- `Device`: a concrete, validated placement such as "cpu" or "cuda:1"

No backend library is imported here; the descriptor only names a placement.
"""

from __future__ import annotations

from enum import Enum
import os
import re


class DeviceType(Enum):
    """
    Kind of compute device an operator specialization targets.

    Attributes
    ----------
    CPU : DeviceType
        Host memory, NumPy kernels.
    CUDA : DeviceType
        CUDA device memory, CuPy kernels.
    """

    CPU = "cpu"
    CUDA = "cuda"


class Device:
    """
    Concrete device placement.

    Parameters
    ----------
    device : str
        "cpu", "cuda" or "cuda:<index>". A bare "cuda" resolves its index from
        the ``CONVCORE_CUDA_DEVICE`` environment variable (default 0).

    Raises
    ------
    ValueError
        If the string is not one of the supported forms.
    """

    __slots__ = ("type", "index")

    _CUDA_PATTERN = re.compile(r"^cuda(?::(\d+))?$")

    def __init__(self, device: str):
        if device == "cpu":
            self.type = DeviceType.CPU
            self.index = None
            return

        m = self._CUDA_PATTERN.match(device)
        if not m:
            raise ValueError(
                f"Invalid device '{device}'. Expected 'cpu', 'cuda' or 'cuda:<index>'"
            )
        self.type = DeviceType.CUDA
        if m.group(1) is not None:
            self.index = int(m.group(1))
        else:
            self.index = default_cuda_index()

    def __str__(self) -> str:
        return "cpu" if self.type is DeviceType.CPU else f"cuda:{self.index}"

    def __repr__(self) -> str:
        return f"Device('{self}')"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Device):
            return NotImplemented
        return (self.type, self.index) == (other.type, other.index)

    def __hash__(self) -> int:
        return hash((self.type, self.index))

    def is_cpu(self) -> bool:
        """Return True if this placement is host memory."""
        return self.type is DeviceType.CPU

    def is_cuda(self) -> bool:
        """Return True if this placement is a CUDA device."""
        return self.type is DeviceType.CUDA


def default_cuda_index() -> int:
    """
    Return the CUDA device index used when none is given explicitly.

    Reads ``CONVCORE_CUDA_DEVICE``; falls back to 0 when the variable is unset.

    Raises
    ------
    ValueError
        If the variable is set to something other than a non-negative integer.
    """
    raw = os.environ.get("CONVCORE_CUDA_DEVICE", "").strip()
    if not raw:
        return 0
    if not raw.isdigit():
        raise ValueError(
            f"CONVCORE_CUDA_DEVICE must be a non-negative integer, got {raw!r}"
        )
    return int(raw)
