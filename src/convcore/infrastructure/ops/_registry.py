"""
Backend kernel table.

Every backend module (``*_cpu.py``, ``*_cuda.py``) registers its primitives
here under a ``(op, DeviceType, dtype)`` key; `kernel_set.KernelSet` reads
them back for one placement.
"""

from ...domain.utils._kernel_dispatch import KernelRegistry

BACKEND_KERNELS = KernelRegistry()
