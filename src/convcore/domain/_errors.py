"""
Status codes and kernel exceptions for convcore.

Every public operator call returns an `ErrorCode`. Inside a call, helpers
signal failures by raising a `KernelError` subclass; the operator boundary
(see `domain.utils._kernel_dispatch`) catches it, records the message on the
execution context and returns the carried code unchanged.

The taxonomy is closed:

- SUCCESS
- OUT_OF_MEMORY      allocation failure (e.g. the all-ones cache)
- INVALID_ARGUMENT   shape/device/dtype mismatch or degenerate geometry
- BACKEND_FAILURE    the linear-algebra or device primitive failed
- UNSUPPORTED        no implementation for a device/dtype combination
"""

from enum import Enum


class ErrorCode(Enum):
    """
    Result of an operator call.

    Callers must check the value; a non-success result means every output of
    the call is undefined.
    """

    SUCCESS = "success"
    OUT_OF_MEMORY = "out_of_memory"
    INVALID_ARGUMENT = "invalid_argument"
    BACKEND_FAILURE = "backend_failure"
    UNSUPPORTED = "unsupported"


class KernelError(RuntimeError):
    """
    Base class for failures raised inside a kernel call.

    Attributes
    ----------
    code : ErrorCode
        Status reported to the caller once the error reaches an operator
        boundary.
    """

    code: ErrorCode = ErrorCode.BACKEND_FAILURE

    def __init__(self, message: str) -> None:
        super().__init__(message)


class OutOfMemoryError(KernelError):
    """Raised when a buffer (all-ones vector, workspace) cannot be allocated."""

    code = ErrorCode.OUT_OF_MEMORY


class InvalidArgumentError(KernelError):
    """Raised on inconsistent shapes, placements or patch geometry."""

    code = ErrorCode.INVALID_ARGUMENT


class BackendFailureError(KernelError):
    """Raised when a NumPy/CuPy primitive reports an error."""

    code = ErrorCode.BACKEND_FAILURE


class UnsupportedError(KernelError):
    """
    Raised when no specialization exists for the requested placement.

    Attributes
    ----------
    op : str
        Name of the operation that was attempted.
    placement : str
        Human-readable device/dtype pair.
    """

    code = ErrorCode.UNSUPPORTED

    def __init__(self, op: str, placement: str) -> None:
        super().__init__(f"{op} is not implemented for {placement}.")
        self.op = op
        self.placement = placement


class DeviceMismatchError(InvalidArgumentError):
    """
    Raised when cooperating tensors live on different devices.
    """

    def __init__(self, device_a: str, device_b: str) -> None:
        super().__init__(f"Device mismatch: '{device_a}' vs '{device_b}'.")
        self.device_a = device_a
        self.device_b = device_b


class DTypeMismatchError(InvalidArgumentError):
    """
    Raised when cooperating tensors have different element types.
    """

    def __init__(self, dtype_a: str, dtype_b: str) -> None:
        super().__init__(f"Dtype mismatch: '{dtype_a}' vs '{dtype_b}'.")
        self.dtype_a = dtype_a
        self.dtype_b = dtype_b
