"""
Tensor descriptor used by convcore operators.

A `Tensor` is a *reference* to a flat, contiguous buffer plus a 4-D shape
``(width, height, depth, size)``. Width varies fastest and size (the batch
count) slowest, so sample ``i`` of a batch occupies the contiguous range
``[i * volume, (i + 1) * volume)`` of the buffer.

Memory is never allocated behind the caller's back: the buffer is the NumPy
(CPU) or CuPy (CUDA) array handed to the constructor, and operators write
through it in place.

The absent sentinel
-------------------
`Tensor.empty()` stands for an optional operand or output that was not
requested. It is falsy, so operator code reads as::

    if filter:
        ...   # filter present
    else:
        ...   # identity path
"""

from __future__ import annotations

from typing import Any, Optional, Sequence, Tuple

import numpy as np

from ...domain._errors import InvalidArgumentError
from ...domain.device._device import Device

Shape4 = Tuple[int, int, int, int]

SUPPORTED_DTYPES = ("float32", "float64")


def _normalize_shape(shape: Sequence[int]) -> Shape4:
    dims = [int(s) for s in shape]
    if len(dims) > 4:
        raise ValueError(f"Tensor shape has at most 4 dimensions, got {tuple(dims)}")
    if any(d < 0 for d in dims):
        raise ValueError(f"Tensor shape must be non-negative, got {tuple(dims)}")
    dims += [1] * (4 - len(dims))
    return dims[0], dims[1], dims[2], dims[3]


def _infer_device(data: Any) -> Device:
    if isinstance(data, np.ndarray):
        return Device("cpu")
    # CuPy arrays expose the owning device as `.device.id`
    dev = getattr(data, "device", None)
    dev_id = getattr(dev, "id", None)
    if dev_id is None:
        raise TypeError(f"Unsupported buffer type for Tensor: {type(data)!r}")
    return Device(f"cuda:{int(dev_id)}")


class Tensor:
    """
    Flat buffer plus (width, height, depth, size) shape.

    Parameters
    ----------
    data : numpy.ndarray or cupy.ndarray
        One-dimensional, contiguous buffer of float32 or float64 values.
    shape : Sequence[int]
        Up to four dimensions ``(width, height, depth, size)``; missing
        trailing dimensions default to 1.
    device : Optional[Device]
        Declared placement. Inferred from ``data`` when omitted.

    Raises
    ------
    ValueError
        If the shape does not match the number of elements, the buffer is not
        1-D/contiguous, or the dtype is not float32/float64.
    """

    __slots__ = ("_data", "_shape", "_device")

    def __init__(
        self,
        data: Any,
        shape: Sequence[int],
        device: Optional[Device] = None,
    ) -> None:
        self._shape = _normalize_shape(shape)
        self._device = device if device is not None else _infer_device(data)

        if data.ndim != 1:
            raise ValueError(f"Tensor buffer must be 1-D, got ndim={data.ndim}")
        if not data.flags.c_contiguous:
            raise ValueError("Tensor buffer must be contiguous")
        dtype_name = np.dtype(data.dtype).name
        if dtype_name not in SUPPORTED_DTYPES:
            raise ValueError(
                f"Tensor dtype must be one of {SUPPORTED_DTYPES}, got {dtype_name}"
            )
        n = self._shape[0] * self._shape[1] * self._shape[2] * self._shape[3]
        if int(data.size) != n:
            raise ValueError(
                f"shape {self._shape} needs {n} elements, buffer has {int(data.size)}"
            )
        self._data = data

    # ------------------------------------------------------------------
    # Sentinel
    # ------------------------------------------------------------------
    @classmethod
    def empty(cls) -> "Tensor":
        """Return the shared absent-tensor sentinel."""
        return _EMPTY

    def is_empty(self) -> bool:
        return self._data is None

    def __bool__(self) -> bool:
        return not self.is_empty()

    # ------------------------------------------------------------------
    # Factories
    # ------------------------------------------------------------------
    @classmethod
    def zeros(
        cls,
        shape: Sequence[int],
        dtype: Any = np.float32,
        device: Optional[Device] = None,
    ) -> "Tensor":
        """
        Allocate a zero-filled tensor on ``device`` (CPU by default).
        """
        device = device if device is not None else Device("cpu")
        dims = _normalize_shape(shape)
        n = dims[0] * dims[1] * dims[2] * dims[3]
        if device.is_cpu():
            return cls(np.zeros(n, dtype=dtype), dims, device)

        from ..backends._cuda_loader import require_cuda_backend

        cp = require_cuda_backend("Tensor.zeros")
        with cp.cuda.Device(device.index):
            return cls(cp.zeros(n, dtype=dtype), dims, device)

    @classmethod
    def from_numpy(
        cls,
        arr: np.ndarray,
        shape: Optional[Sequence[int]] = None,
        device: Optional[Device] = None,
    ) -> "Tensor":
        """
        Copy a host array into a new tensor.

        Parameters
        ----------
        arr : np.ndarray
            Values in ``(size, depth, height, width)`` C order (the reverse of
            the tensor shape). Any array with the right number of elements is
            accepted when ``shape`` is given.
        shape : Optional[Sequence[int]]
            Tensor shape. Defaults to ``reversed(arr.shape)``.
        device : Optional[Device]
            Target placement; CPU by default.
        """
        arr = np.asarray(arr)
        if shape is None:
            shape = tuple(reversed(arr.shape))
        device = device if device is not None else Device("cpu")
        flat = np.ascontiguousarray(arr).reshape(-1).copy()
        if device.is_cpu():
            return cls(flat, shape, device)

        from ..backends._cuda_loader import require_cuda_backend

        cp = require_cuda_backend("Tensor.from_numpy")
        with cp.cuda.Device(device.index):
            return cls(cp.asarray(flat), shape, device)

    def to_numpy(self) -> np.ndarray:
        """
        Return the values as a host array shaped ``(size, depth, height, width)``.

        CPU tensors return a view of their buffer; CUDA tensors are copied.
        """
        if self.is_empty():
            raise InvalidArgumentError("cannot read an empty tensor")
        host = self._data if self._device.is_cpu() else self._data.get()
        w, h, d, n = self._shape
        return host.reshape(n, d, h, w)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------
    @property
    def data(self) -> Any:
        """Underlying flat buffer (NumPy or CuPy array)."""
        return self._data

    @property
    def shape(self) -> Shape4:
        return self._shape

    @property
    def device(self) -> Device:
        return self._device

    @property
    def dtype(self) -> np.dtype:
        return np.dtype(self._data.dtype)

    @property
    def dtype_name(self) -> str:
        return self.dtype.name

    @property
    def width(self) -> int:
        return self._shape[0]

    @property
    def height(self) -> int:
        return self._shape[1]

    @property
    def depth(self) -> int:
        return self._shape[2]

    @property
    def size(self) -> int:
        """Number of items in the batch (fourth dimension)."""
        return self._shape[3]

    @property
    def volume(self) -> int:
        """Number of elements of one item: ``width * height * depth``."""
        return self._shape[0] * self._shape[1] * self._shape[2]

    @property
    def num_elements(self) -> int:
        return self.volume * self._shape[3]

    def item(self, index: int) -> Any:
        """Return a view of the buffer holding batch item ``index``."""
        v = self.volume
        return self._data[index * v : (index + 1) * v]

    def __repr__(self) -> str:
        if self.is_empty():
            return "Tensor.empty()"
        return (
            f"Tensor(shape={self._shape}, dtype={self.dtype_name}, "
            f"device='{self._device}')"
        )


def _make_empty() -> Tensor:
    t = object.__new__(Tensor)
    t._data = None
    t._shape = (0, 0, 0, 0)
    t._device = Device("cpu")
    return t


_EMPTY = _make_empty()
