import unittest

from convcore.domain._errors import InvalidArgumentError
from convcore.domain._geometry import PatchGeometry, ceil_divide, floor_divide


class TestExactDivision(unittest.TestCase):
    def test_floor_divide_rounds_toward_negative_infinity(self):
        self.assertEqual(floor_divide(7, 2), 3)
        self.assertEqual(floor_divide(-3, 2), -2)
        self.assertEqual(floor_divide(-4, 2), -2)

    def test_ceil_divide_rounds_toward_positive_infinity(self):
        self.assertEqual(ceil_divide(7, 2), 4)
        self.assertEqual(ceil_divide(-3, 2), -1)
        self.assertEqual(ceil_divide(-4, 2), -2)
        self.assertEqual(ceil_divide(0, 3), 0)


class TestPatchGeometryDerivedSizes(unittest.TestCase):
    def test_defaults_no_padding_unit_stride(self):
        g = PatchGeometry(width=4, height=4, depth=1, window_width=2, window_height=2)
        self.assertEqual((g.num_patches_x, g.num_patches_y), (3, 3))
        self.assertEqual(g.num_rows, 4)
        self.assertEqual(g.stacked_size, 4 * 9)
        self.assertEqual(g.volume_size, 16)

    def test_stride_padding_and_dilation(self):
        g = PatchGeometry.from_window(
            (5, 6, 2), (3, 2), stride=(2, 1), pad=(1, 1, 0, 2), dilate=(1, 2)
        )
        self.assertEqual(g.window_extent_x, 3)
        self.assertEqual(g.window_extent_y, 3)
        # (5 + 2 - 3) // 2 + 1, (6 + 2 - 3) // 1 + 1
        self.assertEqual(g.num_patches_x, 3)
        self.assertEqual(g.num_patches_y, 6)
        self.assertEqual(g.num_rows, 3 * 2 * 2)

    def test_window_covering_whole_volume_has_one_patch(self):
        g = PatchGeometry.from_window((3, 2, 4), (3, 2))
        self.assertEqual(g.num_patches, 1)

    def test_row_offset_decomposition(self):
        g = PatchGeometry.from_window((4, 4, 2), (2, 3))
        self.assertEqual(g.row_offset(0), (0, 0, 0))
        self.assertEqual(g.row_offset(1), (1, 0, 0))
        self.assertEqual(g.row_offset(2), (0, 1, 0))
        self.assertEqual(g.row_offset(7), (1, 0, 1))
        self.assertEqual(g.row_offset(g.num_rows - 1), (1, 2, 1))

    def test_row_offset_is_a_bijection(self):
        g = PatchGeometry.from_window((3, 3, 3), (2, 3))
        offsets = {g.row_offset(r) for r in range(g.num_rows)}
        self.assertEqual(len(offsets), g.num_rows)


class TestValidRanges(unittest.TestCase):
    def test_left_padding_excludes_first_patch_for_first_tap(self):
        g = PatchGeometry.from_window((4, 4, 1), (2, 2), pad=(1, 1, 0, 0))
        self.assertEqual(g.num_patches_x, 5)
        self.assertEqual(g.valid_range_x(0), (1, 5))
        self.assertEqual(g.valid_range_x(1), (0, 4))

    def test_ranges_match_brute_force(self):
        g = PatchGeometry.from_window(
            (7, 5, 1), (3, 2), stride=(2, 3), pad=(2, 3, 1, 4), dilate=(3, 2)
        )
        for u in range(g.window_width):
            inside = [
                x
                for x in range(g.num_patches_x)
                if 0 <= x * g.stride_x + u * g.dilate_x - g.pad_left < g.width
            ]
            x0, x1 = g.valid_range_x(u)
            self.assertEqual(list(range(max(0, x0), x1)), inside)
        for v in range(g.window_height):
            inside = [
                y
                for y in range(g.num_patches_y)
                if 0 <= y * g.stride_y + v * g.dilate_y - g.pad_top < g.height
            ]
            y0, y1 = g.valid_range_y(v)
            self.assertEqual(list(range(max(0, y0), y1)), inside)

    def test_large_padding_gives_empty_range(self):
        g = PatchGeometry.from_window((1, 1, 1), (1, 1), pad=(3, 3, 0, 0), stride=(4, 1))
        # patches sample x = -3 and x = 1; neither is inside [0, 1)
        x0, x1 = g.valid_range_x(0)
        self.assertLessEqual(x1, max(0, x0))


class TestValidate(unittest.TestCase):
    def test_valid_geometry_passes(self):
        PatchGeometry.from_window((4, 4, 1), (2, 2)).validate()

    def test_zero_patches_is_allowed(self):
        g = PatchGeometry.from_window((2, 2, 1), (3, 3))
        g.validate()
        self.assertEqual(g.num_patches, 0)

    def test_window_larger_than_padded_volume_rejected(self):
        with self.assertRaises(InvalidArgumentError):
            PatchGeometry.from_window((2, 2, 1), (4, 1)).validate()

    def test_non_positive_stride_rejected(self):
        with self.assertRaises(InvalidArgumentError):
            PatchGeometry.from_window((4, 4, 1), (2, 2), stride=(0, 1)).validate()

    def test_negative_padding_rejected(self):
        with self.assertRaises(InvalidArgumentError):
            PatchGeometry.from_window((4, 4, 1), (2, 2), pad=(0, -1, 0, 0)).validate()

    def test_zero_dilation_rejected(self):
        with self.assertRaises(InvalidArgumentError):
            PatchGeometry.from_window((4, 4, 1), (2, 2), dilate=(1, 0)).validate()

    def test_empty_volume_rejected(self):
        with self.assertRaises(InvalidArgumentError):
            PatchGeometry.from_window((4, 4, 0), (2, 2)).validate()


if __name__ == "__main__":
    unittest.main()
