"""
scripts/bench_im2row_cpu_vs_cuda.py

CPU vs CUDA microbenchmark (NOT a unit test) for convcore.

Benchmarks, per case:
- im2row forward (patch extraction) through `Im2Row.forward`
- convolution forward through `Convolution.forward` (im2row + GEMM)

Timing policy
-------------
- Excludes HtoD/DtoH transfers (performed once per case).
- Preallocates every output outside the timed region.
- Synchronizes the CUDA device after each timed call.

Usage
-----
python scripts/bench_im2row_cpu_vs_cuda.py --presets --dtype float32
python scripts/bench_im2row_cpu_vs_cuda.py --W 64 --H 64 --C 32 --N 8 --K 3 --F 64
python scripts/bench_im2row_cpu_vs_cuda.py --presets --stride 2 --pad 1 --sanity
"""

from __future__ import annotations

import argparse
import os
import statistics
import sys
import time
from dataclasses import dataclass
from typing import Callable, Optional

import numpy as np

# -------------------------
# Make repo_root/src importable
# -------------------------
THIS_DIR = os.path.dirname(os.path.abspath(__file__))
ROOT_DIR = os.path.abspath(os.path.join(THIS_DIR, ".."))
SRC_DIR = os.path.join(ROOT_DIR, "src")
if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)

from convcore.domain._errors import ErrorCode
from convcore.domain.device._device import Device
from convcore.infrastructure.backends._cuda_loader import load_cuda_backend
from convcore.infrastructure.context._context import Context
from convcore.infrastructure.convolution._convolution import Convolution
from convcore.infrastructure.im2row._im2row import Im2Row
from convcore.infrastructure.tensor._tensor import Tensor


def _time_one(fn: Callable[[], None], *, warmup: int, repeats: int) -> list[float]:
    for _ in range(warmup):
        fn()
    ts: list[float] = []
    for _ in range(repeats):
        t0 = time.perf_counter()
        fn()
        t1 = time.perf_counter()
        ts.append(t1 - t0)
    return ts


def _fmt_seconds(x: float) -> str:
    if x < 1e-6:
        return f"{x*1e9:.2f} ns"
    if x < 1e-3:
        return f"{x*1e6:.2f} µs"
    if x < 1:
        return f"{x*1e3:.2f} ms"
    return f"{x:.3f} s"


def _speedup(a: float, b: float) -> float:
    return (a / b) if b > 0 else float("inf")


@dataclass(frozen=True)
class Case:
    name: str
    W: int
    H: int
    C: int
    N: int
    K: int
    F: int


def _check(status: ErrorCode, ctx: Context) -> None:
    if status is not ErrorCode.SUCCESS:
        raise RuntimeError(f"{status.value}: {ctx.last_error_message}")


def _bench_case(
    case: Case,
    *,
    dtype: np.dtype,
    stride: int,
    pad: int,
    warmup: int,
    repeats: int,
    sanity: bool,
    rng_seed: int,
    cuda_device: Optional[Device],
) -> None:
    rng = np.random.default_rng(rng_seed)
    x_np = rng.standard_normal((case.N, case.C, case.H, case.W)).astype(dtype, copy=False)
    w_np = rng.standard_normal((case.F, case.C, case.K, case.K)).astype(dtype, copy=False)

    conv_kwargs = dict(stride=(stride, stride), pad=(pad, pad, pad, pad))
    devices = [Device("cpu")] + ([cuda_device] if cuda_device is not None else [])
    timings = {}
    outputs = {}

    for device in devices:
        ctx = Context(device)
        x = Tensor.from_numpy(x_np, device=device)
        w = Tensor.from_numpy(w_np, device=device)
        conv = Convolution(ctx, **conv_kwargs)
        geometry = conv.geometry(x, w)
        im2row = Im2Row(ctx)

        stacked = Tensor.zeros((geometry.stacked_size, 1, 1, case.N), dtype=dtype, device=device)
        out = Tensor.zeros(conv.output_shape(x, w), dtype=dtype, device=device)

        sync = (lambda: None) if device.is_cpu() else load_cuda_backend().cuda.runtime.deviceSynchronize

        def im2row_fwd() -> None:
            _check(im2row.forward(stacked, x, geometry), ctx)
            sync()

        def conv_fwd() -> None:
            _check(conv.forward(out, x, w), ctx)
            sync()

        timings[device.type] = (
            statistics.median(_time_one(im2row_fwd, warmup=warmup, repeats=repeats)),
            statistics.median(_time_one(conv_fwd, warmup=warmup, repeats=repeats)),
        )
        outputs[device.type] = out.to_numpy()

    if sanity and len(outputs) == 2:
        cpu_out, cuda_out = outputs.values()
        np.testing.assert_allclose(cuda_out, cpu_out, rtol=1e-4, atol=1e-4)

    cpu_t = timings[Device("cpu").type]
    line = (
        f"{case.name:<14} (W={case.W} H={case.H} C={case.C} N={case.N} K={case.K} F={case.F})  "
        f"im2row cpu={_fmt_seconds(cpu_t[0]):>10}  conv cpu={_fmt_seconds(cpu_t[1]):>10}"
    )
    if cuda_device is not None:
        cuda_t = timings[cuda_device.type]
        line += (
            f"  im2row cuda={_fmt_seconds(cuda_t[0]):>10} ({_speedup(cpu_t[0], cuda_t[0]):.2f}x)"
            f"  conv cuda={_fmt_seconds(cuda_t[1]):>10} ({_speedup(cpu_t[1], cuda_t[1]):.2f}x)"
        )
    print(line)


def main() -> None:
    ap = argparse.ArgumentParser()
    ap.add_argument("--W", type=int, default=32)
    ap.add_argument("--H", type=int, default=32)
    ap.add_argument("--C", type=int, default=16)
    ap.add_argument("--N", type=int, default=4)
    ap.add_argument("--K", type=int, default=3, help="Square window size.")
    ap.add_argument("--F", type=int, default=32, help="Number of filters.")
    ap.add_argument("--stride", type=int, default=1)
    ap.add_argument("--pad", type=int, default=0)
    ap.add_argument("--dtype", choices=["float32", "float64"], default="float32")
    ap.add_argument("--warmup", type=int, default=3)
    ap.add_argument("--repeats", type=int, default=10)
    ap.add_argument("--presets", action="store_true", help="Run a preset suite.")
    ap.add_argument(
        "--sanity",
        action="store_true",
        help="Check CUDA convolution output against the CPU result (not timed).",
    )
    ap.add_argument("--cpu-only", action="store_true", help="Skip the CUDA backend.")
    ap.add_argument("--seed", type=int, default=0, help="RNG seed.")
    ap.add_argument("--device", type=int, default=0, help="CUDA device index.")
    args = ap.parse_args()

    dtype = np.float32 if args.dtype == "float32" else np.float64

    cuda_device: Optional[Device] = None
    if not args.cpu_only:
        if load_cuda_backend() is None:
            raise SystemExit("CUDA backend unavailable; install convcore[cuda] or pass --cpu-only.")
        cuda_device = Device(f"cuda:{args.device}")

    print("\n" + "=" * 98)
    print(
        f"convcore im2row/convolution benchmark  dtype={args.dtype}  "
        f"(warmup={args.warmup}, repeats={args.repeats}, "
        f"device={cuda_device if cuda_device is not None else 'cpu only'})"
    )
    print("=" * 98)

    if args.presets:
        cases = [
            Case("small", 16, 16, 8, 8, 3, 16),
            Case("mid", 32, 32, 32, 8, 3, 64),
            Case("wide-window", 32, 32, 16, 4, 5, 32),
            Case("big", 64, 64, 64, 8, 3, 128),
        ]
    else:
        cases = [Case("single", args.W, args.H, args.C, args.N, args.K, args.F)]

    for c in cases:
        _bench_case(
            c,
            dtype=dtype,
            stride=args.stride,
            pad=args.pad,
            warmup=args.warmup,
            repeats=args.repeats,
            sanity=args.sanity,
            rng_seed=args.seed,
            cuda_device=cuda_device,
        )


if __name__ == "__main__":
    main()
