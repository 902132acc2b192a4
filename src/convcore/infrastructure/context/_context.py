"""
Execution context shared by convcore operators.

A `Context` carries the state operators are allowed to share across calls:

- the last error of a call (code and annotated message);
- a lazily grown all-ones vector, used to broadcast or reduce over a batch
  through gemm/gemv instead of dedicated kernels;
- a scratch workspace (e.g. the patch matrix of a lowered convolution).

Buffers are cached per ``(Device, dtype)``, so each GPU gets its own copy, and reallocated only when a
longer length is requested. Growing a cache is a single-writer operation:
concurrent calls that request different lengths from the same context must be
serialized by the caller. Reads of an existing all-ones vector are safe.
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Tuple

import numpy as np

from ...domain._errors import ErrorCode, OutOfMemoryError
from ...domain.device._device import Device
from ..backends._cuda_loader import require_cuda_backend

CacheKey = Tuple[Device, str]


class Context:
    """
    Device placement, error state and shared scratch buffers.

    Parameters
    ----------
    device : Optional[Device]
        Default placement of the context. Shared buffers are allocated on
        the device passed to each request, not on this one. Defaults to CPU.
    """

    def __init__(self, device: Optional[Device] = None) -> None:
        self.device = device if device is not None else Device("cpu")
        self._all_ones: Dict[CacheKey, Any] = {}
        self._workspace: Dict[CacheKey, Any] = {}
        self._last_error = ErrorCode.SUCCESS
        self._last_error_message = ""

    # ------------------------------------------------------------------
    # Error bookkeeping
    # ------------------------------------------------------------------
    @property
    def last_error(self) -> ErrorCode:
        return self._last_error

    @property
    def last_error_message(self) -> str:
        return self._last_error_message

    def set_error(self, code: ErrorCode, message: str = "") -> ErrorCode:
        """
        Record the outcome of a failed call and return ``code`` unchanged.
        """
        self._last_error = code
        self._last_error_message = message
        return code

    def reset_error(self) -> None:
        self._last_error = ErrorCode.SUCCESS
        self._last_error_message = ""

    # ------------------------------------------------------------------
    # Shared buffers
    # ------------------------------------------------------------------
    def get_all_ones(self, device: Device, dtype: Any, length: int) -> Any:
        """
        Return a vector of at least ``length`` ones on ``device``.

        The returned array is a view of length ``length`` into a cached buffer.
        It must be treated as read-only (CPU views are flagged as such).

        Raises
        ------
        OutOfMemoryError
            If the buffer cannot be allocated.
        """
        key = (device, np.dtype(dtype).name)
        buf = self._all_ones.get(key)
        if buf is None or buf.size < length:
            buf = self._allocate(device, dtype, length, fill=1)
            self._all_ones[key] = buf
        view = buf[:length]
        if device.is_cpu():
            view.flags.writeable = False
        return view

    def get_workspace(self, device: Device, dtype: Any, length: int) -> Any:
        """
        Return a writable scratch buffer of ``length`` elements on ``device``.

        Contents are undefined; the buffer is reused by the next request.

        Raises
        ------
        OutOfMemoryError
            If the buffer cannot be allocated.
        """
        key = (device, np.dtype(dtype).name)
        buf = self._workspace.get(key)
        if buf is None or buf.size < length:
            buf = self._allocate(device, dtype, length, fill=None)
            self._workspace[key] = buf
        return buf[:length]

    def clear_all_ones(self) -> None:
        self._all_ones.clear()

    def clear_workspace(self) -> None:
        self._workspace.clear()

    def _allocate(
        self, device: Device, dtype: Any, length: int, *, fill: Optional[int]
    ) -> Any:
        length = max(int(length), 0)
        try:
            if device.is_cpu():
                if fill is None:
                    return np.empty(length, dtype=dtype)
                return np.full(length, fill, dtype=dtype)

            cp = require_cuda_backend("Context.allocate")
            with cp.cuda.Device(device.index):
                if fill is None:
                    return cp.empty(length, dtype=dtype)
                return cp.full(length, fill, dtype=dtype)
        except MemoryError as e:
            # cupy.cuda.memory.OutOfMemoryError derives from MemoryError
            raise OutOfMemoryError(
                f"cannot allocate {length} x {np.dtype(dtype).name} on "
                f"{device}: {e}"
            ) from e
