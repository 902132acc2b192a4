"""
Device/dtype dispatch for operator kernels.

This module selects one specialization of an operation from two independent
keys: the `DeviceType` that owns the memory and the element dtype name
("float32", "float64"). The selection is a table lookup, never an if/elif
chain, so adding a backend means registering more entries without touching
operator code.

Two layers are provided:

- `KernelRegistry`: a plain table ``(op, device_type, dtype) -> callable`` used
  for backend primitives (gemm, gemv, copy, im2row kernels).
- `create_kernel_builder()`: a decorator factory that installs a dispatching
  wrapper on an operator class. The wrapper resolves the placement from the
  tensor arguments of the call, forwards to the registered specialization and
  converts any `KernelError` into the `ErrorCode` returned to the caller.

Usage
-----
    kernel = create_kernel_builder()

    class Scale:
        def __init__(self, context): self.context = context
        def forward(self, output, input) -> ErrorCode: ...

    @kernel(Scale, Scale.forward, DeviceType.CPU, "float32")
    def _scale_forward_cpu_f32(self, output, input):
        ...

    status = Scale(ctx).forward(out, x)   # ErrorCode.SUCCESS or a failure
"""

from __future__ import annotations

from abc import abstractmethod
from collections import namedtuple
from functools import wraps
from typing import (
    Any,
    Callable,
    Dict,
    Iterable,
    Optional,
    Protocol,
    Tuple,
    Type,
    runtime_checkable,
)
from typing_extensions import ParamSpec, TypeVar

from .._errors import (
    DTypeMismatchError,
    DeviceMismatchError,
    ErrorCode,
    InvalidArgumentError,
    KernelError,
    UnsupportedError,
)
from ..device._device import Device, DeviceType

P = ParamSpec("P")
R = TypeVar("R")

KernelKey = namedtuple("KernelKey", ["OpName", "DeviceType", "DType"])
"""Key of one specialization: operation name, device kind, dtype name."""


@runtime_checkable
class TensorLike(Protocol):
    """
    Structural view of a tensor as seen by the dispatcher.

    Only placement matters here: the device, the dtype name and whether the
    tensor is the absent sentinel.
    """

    @property
    def device(self) -> Device: ...

    @property
    def dtype_name(self) -> str: ...

    def is_empty(self) -> bool: ...


@runtime_checkable
class ErrorSink(Protocol):
    """Anything that records the last error of a call (an execution context)."""

    @abstractmethod
    def set_error(self, code: ErrorCode, message: str) -> ErrorCode: ...


def resolve_placement(*tensors: Any) -> Tuple[Device, str]:
    """
    Return the device and dtype shared by all present tensors.

    Empty tensors and non-tensor arguments are ignored.

    Raises
    ------
    DeviceMismatchError
        If two present tensors live on different devices.
    DTypeMismatchError
        If two present tensors have different dtypes.
    InvalidArgumentError
        If no tensor is present.
    """
    device: Optional[Device] = None
    dtype: Optional[str] = None
    for t in tensors:
        if not isinstance(t, TensorLike) or t.is_empty():
            continue
        if device is None:
            device, dtype = t.device, t.dtype_name
            continue
        if t.device != device:
            raise DeviceMismatchError(str(device), str(t.device))
        if t.dtype_name != dtype:
            raise DTypeMismatchError(str(dtype), t.dtype_name)

    if device is None or dtype is None:
        raise InvalidArgumentError("no tensor operand is present")
    return device, dtype


class KernelRegistry:
    """
    Table of backend primitives keyed by operation, device kind and dtype.
    """

    def __init__(self) -> None:
        self._kernels: Dict[KernelKey, Callable[..., Any]] = {}

    def register(
        self, op: str, device_type: DeviceType, *dtypes: str
    ) -> Callable[[Callable[P, R]], Callable[P, R]]:
        """
        Decorator registering an implementation for one or more dtypes.

        Raises
        ------
        ValueError
            If no dtype is given or an entry already exists.
        """
        if not dtypes:
            raise ValueError(f"register({op!r}) needs at least one dtype")

        def decorator(fn: Callable[P, R]) -> Callable[P, R]:
            for dtype in dtypes:
                key = KernelKey(op, device_type, dtype)
                if key in self._kernels:
                    raise ValueError(f"kernel already registered for {key}")
                self._kernels[key] = fn
            return fn

        return decorator

    def resolve(self, op: str, device_type: DeviceType, dtype: str) -> Callable:
        """
        Return the implementation for ``(op, device_type, dtype)``.

        Raises
        ------
        UnsupportedError
            If nothing was registered for that combination.
        """
        fn = self._kernels.get(KernelKey(op, device_type, dtype))
        if fn is None:
            raise UnsupportedError(op, f"{device_type.value}/{dtype}")
        return fn

    def placements(self, op: str) -> Iterable[Tuple[DeviceType, str]]:
        """Yield every ``(device_type, dtype)`` pair registered for ``op``."""
        for key in self._kernels:
            if key.OpName == op:
                yield key.DeviceType, key.DType

    def __contains__(self, key: Tuple[str, DeviceType, str]) -> bool:
        return KernelKey(*key) in self._kernels


def create_kernel_builder() -> Callable[
    [Type, Callable[P, R], DeviceType, str],
    Callable[[Callable[P, R]], Callable[P, R]],
]:
    """
    Create a decorator factory that registers operator specializations.

    The returned ``templator(cls, method, device_type, dtype)`` produces a
    decorator. Applying it to ``sub_method``:

    1) stores ``sub_method`` under ``(Class.method, device_type, dtype)``;
    2) replaces ``cls.method`` (once) with a wrapper that
       - resolves the placement from the call's tensor arguments,
       - looks up the specialization (UNSUPPORTED if absent),
       - calls ``sub_method(self, *args, **kwargs)``,
       - returns ``ErrorCode.SUCCESS``, or the code of the `KernelError`
         raised during validation or computation.

    The instance must expose ``context`` satisfying `ErrorSink`; failures are
    recorded there with the operation name prefixed to the message.

    Returns
    -------
    Callable
        ``templator(cls, method, device_type, dtype) -> decorator``.
    """
    registry = KernelRegistry()

    def templator(
        cls: Type,
        method: Callable[P, R],
        device_type: DeviceType,
        dtype: str,
    ) -> Callable[[Callable[P, R]], Callable[P, R]]:
        op_name = f"{cls.__name__}.{method.__name__}"

        def decorator(sub_method: Callable[P, R]) -> Callable[P, R]:
            registry.register(op_name, device_type, dtype)(sub_method)

            if getattr(getattr(cls, method.__name__), "__kernel_dispatch__", False):
                return sub_method

            @wraps(method)
            def wrapper(self: Any, *args: Any, **kwargs: Any) -> ErrorCode:
                context = getattr(self, "context", None)
                if not isinstance(context, ErrorSink):
                    raise NotImplementedError(
                        f"{type(self)} is missing attribute 'context'"
                    )
                try:
                    device, dt = resolve_placement(*args, *kwargs.values())
                    impl = registry.resolve(op_name, device.type, dt)
                    impl(self, *args, **kwargs)
                except KernelError as e:
                    return context.set_error(e.code, f"{op_name}: {e}")
                return ErrorCode.SUCCESS

            wrapper.__kernel_dispatch__ = True  # type: ignore[attr-defined]
            setattr(cls, method.__name__, wrapper)
            return sub_method

        return decorator

    return templator
