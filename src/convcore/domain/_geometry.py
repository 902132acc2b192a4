"""
Patch geometry for the im2row / row2im transform.

A `PatchGeometry` describes how a window slides over one volume of shape
(width, height, depth): window size, stride, asymmetric zero padding and
dilation. The derived quantities (number of patches, number of rows of the
patch matrix) are shared by every backend, so they live here rather than in
the kernels.

Patch matrix layout
-------------------
The patch matrix has ``num_rows = window_width * window_height * depth`` rows
and ``num_patches_x * num_patches_y`` columns, stored row after row. Row index
``r`` decomposes as ``r = u + window_width * (v + window_height * z)`` and
column index ``c`` as ``c = x + num_patches_x * y``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

from ._errors import InvalidArgumentError


def floor_divide(a: int, b: int) -> int:
    """Floor of ``a / b`` for a positive divisor; exact for negative ``a``."""
    return a // b


def ceil_divide(a: int, b: int) -> int:
    """Ceiling of ``a / b`` for a positive divisor; exact for negative ``a``."""
    return -((-a) // b)


@dataclass(frozen=True)
class PatchGeometry:
    """
    Sampling geometry of a strided, padded, dilated window over a volume.

    Parameters
    ----------
    width, height, depth : int
        Size of the source volume.
    window_width, window_height : int
        Number of taps of the window along x and y.
    stride_x, stride_y : int
        Step between consecutive patches.
    pad_left, pad_right, pad_top, pad_bottom : int
        Virtual zero border around the volume.
    dilate_x, dilate_y : int
        Spacing between taps of the window.

    Notes
    -----
    Construction does not validate; call `validate()` before running a kernel.
    """

    width: int
    height: int
    depth: int
    window_width: int
    window_height: int
    stride_x: int = 1
    stride_y: int = 1
    pad_left: int = 0
    pad_right: int = 0
    pad_top: int = 0
    pad_bottom: int = 0
    dilate_x: int = 1
    dilate_y: int = 1

    @classmethod
    def from_window(
        cls,
        volume: Tuple[int, int, int],
        window: Tuple[int, int],
        *,
        stride: Tuple[int, int] = (1, 1),
        pad: Tuple[int, int, int, int] = (0, 0, 0, 0),
        dilate: Tuple[int, int] = (1, 1),
    ) -> "PatchGeometry":
        """
        Build a geometry from grouped tuples.

        Parameters
        ----------
        volume : tuple[int, int, int]
            (width, height, depth).
        window : tuple[int, int]
            (window_width, window_height).
        stride : tuple[int, int]
            (stride_x, stride_y).
        pad : tuple[int, int, int, int]
            (pad_left, pad_right, pad_top, pad_bottom).
        dilate : tuple[int, int]
            (dilate_x, dilate_y).
        """
        width, height, depth = volume
        window_width, window_height = window
        pad_left, pad_right, pad_top, pad_bottom = pad
        return cls(
            width=int(width),
            height=int(height),
            depth=int(depth),
            window_width=int(window_width),
            window_height=int(window_height),
            stride_x=int(stride[0]),
            stride_y=int(stride[1]),
            pad_left=int(pad_left),
            pad_right=int(pad_right),
            pad_top=int(pad_top),
            pad_bottom=int(pad_bottom),
            dilate_x=int(dilate[0]),
            dilate_y=int(dilate[1]),
        )

    @property
    def window_extent_x(self) -> int:
        return (self.window_width - 1) * self.dilate_x + 1

    @property
    def window_extent_y(self) -> int:
        return (self.window_height - 1) * self.dilate_y + 1

    @property
    def num_patches_x(self) -> int:
        return (
            floor_divide(
                self.width + self.pad_left + self.pad_right - self.window_extent_x,
                self.stride_x,
            )
            + 1
        )

    @property
    def num_patches_y(self) -> int:
        return (
            floor_divide(
                self.height + self.pad_top + self.pad_bottom - self.window_extent_y,
                self.stride_y,
            )
            + 1
        )

    @property
    def num_patches(self) -> int:
        return self.num_patches_x * self.num_patches_y

    @property
    def num_rows(self) -> int:
        return self.window_width * self.window_height * self.depth

    @property
    def volume_size(self) -> int:
        return self.width * self.height * self.depth

    @property
    def stacked_size(self) -> int:
        return self.num_rows * self.num_patches

    def row_offset(self, row: int) -> Tuple[int, int, int]:
        """
        Decompose a patch-matrix row index into its window offset.

        Returns
        -------
        tuple[int, int, int]
            (u, v, z) with ``u < window_width``, ``v < window_height`` and
            ``z < depth``.
        """
        u = row % self.window_width
        v = (row // self.window_width) % self.window_height
        z = row // (self.window_width * self.window_height)
        return u, v, z

    def valid_range_x(self, u: int) -> Tuple[int, int]:
        """
        Half-open range ``[x0, x1)`` of patches whose tap ``u`` falls inside
        ``[0, width)``.

        Both bounds are clamped above by ``num_patches_x``; ``x0`` may be
        negative and ``x1 <= x0`` denotes an empty range.
        """
        n = self.num_patches_x
        x0 = min(n, ceil_divide(self.pad_left - u * self.dilate_x, self.stride_x))
        x1 = min(
            n,
            floor_divide(
                self.width - 1 + self.pad_left - u * self.dilate_x, self.stride_x
            )
            + 1,
        )
        return x0, x1

    def valid_range_y(self, v: int) -> Tuple[int, int]:
        """Same as `valid_range_x` along the y axis for tap ``v``."""
        n = self.num_patches_y
        y0 = min(n, ceil_divide(self.pad_top - v * self.dilate_y, self.stride_y))
        y1 = min(
            n,
            floor_divide(
                self.height - 1 + self.pad_top - v * self.dilate_y, self.stride_y
            )
            + 1,
        )
        return y0, y1

    def validate(self) -> None:
        """
        Check the geometry preconditions of the transform.

        Raises
        ------
        InvalidArgumentError
            If a size, window, stride or dilation is not positive, a padding
            is negative, or the number of patches along an axis is negative.
        """
        positive = {
            "width": self.width,
            "height": self.height,
            "depth": self.depth,
            "window_width": self.window_width,
            "window_height": self.window_height,
            "stride_x": self.stride_x,
            "stride_y": self.stride_y,
            "dilate_x": self.dilate_x,
            "dilate_y": self.dilate_y,
        }
        for name, value in positive.items():
            if value <= 0:
                raise InvalidArgumentError(f"{name} must be positive, got {value}")

        pads = {
            "pad_left": self.pad_left,
            "pad_right": self.pad_right,
            "pad_top": self.pad_top,
            "pad_bottom": self.pad_bottom,
        }
        for name, value in pads.items():
            if value < 0:
                raise InvalidArgumentError(f"{name} must be >= 0, got {value}")

        if self.num_patches_x < 0 or self.num_patches_y < 0:
            raise InvalidArgumentError(
                "window extent exceeds the padded volume: "
                f"num_patches=({self.num_patches_x}, {self.num_patches_y})"
            )
