import unittest

import numpy as np

from convcore.domain._errors import InvalidArgumentError
from convcore.domain._geometry import PatchGeometry
from convcore.infrastructure.ops.im2row_cpu import (
    im2row_backward_cpu,
    im2row_forward_cpu,
    patch_accumulate,
    patch_extract,
)


def _ref_patch_extract(volume: np.ndarray, g: PatchGeometry) -> np.ndarray:
    """Per-element reference: volume is (depth, height, width)."""
    out = np.zeros((g.num_rows, g.num_patches_y, g.num_patches_x), dtype=volume.dtype)
    for row in range(g.num_rows):
        u, v, z = g.row_offset(row)
        for y in range(g.num_patches_y):
            for x in range(g.num_patches_x):
                xd = x * g.stride_x + u * g.dilate_x - g.pad_left
                yd = y * g.stride_y + v * g.dilate_y - g.pad_top
                if 0 <= xd < g.width and 0 <= yd < g.height:
                    out[row, y, x] = volume[z, yd, xd]
    return out


def _ref_patch_accumulate(stacked: np.ndarray, g: PatchGeometry) -> np.ndarray:
    out = np.zeros((g.depth, g.height, g.width), dtype=stacked.dtype)
    for row in range(g.num_rows):
        u, v, z = g.row_offset(row)
        for y in range(g.num_patches_y):
            for x in range(g.num_patches_x):
                xd = x * g.stride_x + u * g.dilate_x - g.pad_left
                yd = y * g.stride_y + v * g.dilate_y - g.pad_top
                if 0 <= xd < g.width and 0 <= yd < g.height:
                    out[z, yd, xd] += stacked[row, y, x]
    return out


GEOMETRIES = [
    PatchGeometry.from_window((4, 4, 1), (2, 2)),
    PatchGeometry.from_window((5, 4, 2), (3, 3), pad=(1, 1, 1, 1)),
    PatchGeometry.from_window((7, 6, 3), (3, 2), stride=(2, 3), pad=(2, 0, 1, 3)),
    PatchGeometry.from_window((6, 7, 2), (2, 3), dilate=(2, 2), pad=(1, 2, 0, 1)),
    PatchGeometry.from_window((5, 5, 1), (3, 3), stride=(2, 2), dilate=(2, 1), pad=(3, 3, 2, 2)),
    PatchGeometry.from_window((3, 2, 2), (1, 1), stride=(3, 3)),
]


class TestIm2RowForwardCpu(unittest.TestCase):
    def setUp(self):
        self.rng = np.random.default_rng(42)

    def test_matches_reference(self):
        for g in GEOMETRIES:
            for dtype in (np.float32, np.float64):
                with self.subTest(geometry=g, dtype=dtype):
                    volume = self.rng.standard_normal((g.depth, g.height, g.width)).astype(dtype)
                    got = patch_extract(volume, g)
                    np.testing.assert_array_equal(got, _ref_patch_extract(volume, g))

    def test_full_window_round_trip(self):
        g = PatchGeometry.from_window((4, 3, 2), (4, 3))
        volume = self.rng.standard_normal((2, 3, 4))
        stacked = patch_extract(volume, g)
        self.assertEqual(stacked.shape, (24, 1, 1))
        # rows (u, v, z) of a single patch enumerate the volume in layout order
        np.testing.assert_array_equal(stacked.reshape(-1), volume.reshape(-1))
        np.testing.assert_array_equal(stacked.reshape(2, 3, 4)[:, 0, 0], volume[:, 0, 0])

    def test_overwrites_previous_contents(self):
        g = PatchGeometry.from_window((3, 3, 1), (2, 2), pad=(1, 1, 1, 1))
        stacked = np.full(g.stacked_size, np.nan)
        data = np.ones(g.volume_size)
        im2row_forward_cpu(stacked, data, g)
        self.assertFalse(np.isnan(stacked).any())

    def test_rows_outside_volume_are_zero(self):
        # tap u = 0 samples x = -3 and x = 1, both outside a 1-wide volume
        g = PatchGeometry.from_window((1, 2, 1), (2, 1), stride=(4, 1), pad=(3, 3, 0, 0))
        x0, x1 = g.valid_range_x(0)
        self.assertLessEqual(x1, max(0, x0))
        stacked = np.full(g.stacked_size, np.nan)
        im2row_forward_cpu(stacked, np.full(g.volume_size, 5.0), g)
        rows = stacked.reshape(g.num_rows, g.num_patches)
        for row in range(g.num_rows):
            u, _, _ = g.row_offset(row)
            if u == 0:
                np.testing.assert_array_equal(rows[row], 0.0)

    def test_padding_border_is_zero(self):
        g = PatchGeometry.from_window((2, 2, 1), (1, 1), pad=(1, 1, 1, 1))
        out = patch_extract(np.ones((1, 2, 2)), g)
        expected = np.zeros((4, 4))
        expected[1:3, 1:3] = 1.0
        np.testing.assert_array_equal(out[0], expected)

    def test_size_mismatch_rejected(self):
        g = PatchGeometry.from_window((4, 4, 1), (2, 2))
        with self.assertRaises(InvalidArgumentError):
            im2row_forward_cpu(np.zeros(g.stacked_size - 1), np.zeros(16), g)
        with self.assertRaises(InvalidArgumentError):
            im2row_forward_cpu(np.zeros(g.stacked_size), np.zeros(15), g)

    def test_invalid_geometry_rejected(self):
        g = PatchGeometry.from_window((4, 4, 1), (2, 2), stride=(0, 1))
        with self.assertRaises(InvalidArgumentError):
            im2row_forward_cpu(np.zeros(36), np.zeros(16), g)

    def test_zero_patches(self):
        g = PatchGeometry.from_window((2, 2, 1), (3, 3))
        out = patch_extract(np.ones((1, 2, 2)), g)
        self.assertEqual(out.size, 0)


class TestIm2RowBackwardCpu(unittest.TestCase):
    def setUp(self):
        self.rng = np.random.default_rng(7)

    def test_matches_reference(self):
        for g in GEOMETRIES:
            with self.subTest(geometry=g):
                stacked = self.rng.standard_normal(
                    (g.num_rows, g.num_patches_y, g.num_patches_x)
                )
                np.testing.assert_allclose(
                    patch_accumulate(stacked, g),
                    _ref_patch_accumulate(stacked, g),
                    rtol=1e-12,
                    atol=1e-12,
                )

    def test_is_adjoint_of_forward(self):
        for g in GEOMETRIES:
            with self.subTest(geometry=g):
                x = self.rng.standard_normal(g.volume_size)
                y = self.rng.standard_normal(g.stacked_size)
                lhs = float(np.dot(patch_extract(x, g).reshape(-1), y))
                rhs = float(np.dot(x, patch_accumulate(y, g).reshape(-1)))
                self.assertAlmostEqual(lhs, rhs, places=9)

    def test_overlapping_patches_sum_hand_computed(self):
        # 4x4x1, window 2x2, stride 1: each voxel is counted once per patch
        # covering it (1 at the corners, 2 on edges, 4 inside).
        g = PatchGeometry.from_window((4, 4, 1), (2, 2))
        volume = np.arange(16, dtype=np.float64).reshape(1, 4, 4)
        coverage = np.array(
            [[1, 2, 2, 1], [2, 4, 4, 2], [2, 4, 4, 2], [1, 2, 2, 1]], dtype=np.float64
        )
        got = patch_accumulate(patch_extract(volume, g), g)
        np.testing.assert_array_equal(got[0], volume[0] * coverage)

    def test_non_overlapping_patches_reconstruct_volume(self):
        g = PatchGeometry.from_window((4, 6, 2), (2, 3), stride=(2, 3))
        volume = self.rng.standard_normal((2, 6, 4))
        np.testing.assert_array_equal(patch_accumulate(patch_extract(volume, g), g), volume)

    def test_overwrites_previous_contents(self):
        g = PatchGeometry.from_window((3, 3, 1), (2, 2))
        data = np.full(g.volume_size, 100.0)
        im2row_backward_cpu(data, np.zeros(g.stacked_size), g)
        np.testing.assert_array_equal(data, 0.0)

    def test_padding_entries_are_dropped(self):
        g = PatchGeometry.from_window((2, 2, 1), (1, 1), pad=(1, 1, 1, 1))
        got = patch_accumulate(np.ones(g.stacked_size), g)
        np.testing.assert_array_equal(got, np.ones((1, 2, 2)))


if __name__ == "__main__":
    unittest.main()
