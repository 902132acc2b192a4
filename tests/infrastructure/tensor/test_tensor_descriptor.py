import unittest

import numpy as np

from convcore.domain._errors import InvalidArgumentError
from convcore.domain.device._device import Device
from convcore.infrastructure.tensor._tensor import Tensor


class TestTensorConstruction(unittest.TestCase):
    def test_shape_is_padded_to_four_dimensions(self):
        t = Tensor(np.zeros(6, dtype=np.float32), (3, 2))
        self.assertEqual(t.shape, (3, 2, 1, 1))
        self.assertEqual(t.volume, 6)
        self.assertEqual(t.size, 1)
        self.assertEqual(t.device, Device("cpu"))
        self.assertEqual(t.dtype_name, "float32")

    def test_element_count_must_match(self):
        with self.assertRaises(ValueError):
            Tensor(np.zeros(5, dtype=np.float32), (3, 2))

    def test_buffer_must_be_flat(self):
        with self.assertRaises(ValueError):
            Tensor(np.zeros((2, 3), dtype=np.float32), (3, 2))

    def test_buffer_must_be_contiguous(self):
        with self.assertRaises(ValueError):
            Tensor(np.zeros(12, dtype=np.float64)[::2], (6,))

    def test_integer_dtype_rejected(self):
        with self.assertRaises(ValueError):
            Tensor(np.zeros(4, dtype=np.int32), (4,))

    def test_too_many_dimensions(self):
        with self.assertRaises(ValueError):
            Tensor(np.zeros(1, dtype=np.float32), (1, 1, 1, 1, 1))


class TestTensorLayout(unittest.TestCase):
    def test_from_numpy_reverses_shape(self):
        arr = np.arange(2 * 3 * 4 * 5, dtype=np.float64).reshape(2, 3, 4, 5)
        t = Tensor.from_numpy(arr)
        self.assertEqual(t.shape, (5, 4, 3, 2))
        self.assertEqual((t.width, t.height, t.depth, t.size), (5, 4, 3, 2))
        np.testing.assert_array_equal(t.to_numpy(), arr)

    def test_width_varies_fastest(self):
        arr = np.arange(6, dtype=np.float32).reshape(1, 1, 2, 3)
        t = Tensor.from_numpy(arr)
        self.assertEqual(float(t.data[1]), 1.0)
        self.assertEqual(float(t.data[3]), 3.0)

    def test_from_numpy_copies(self):
        arr = np.ones((1, 1, 2, 2), dtype=np.float32)
        t = Tensor.from_numpy(arr)
        arr[...] = 5
        self.assertTrue(np.all(t.data == 1))

    def test_item_is_a_view_of_one_batch_entry(self):
        t = Tensor.zeros((2, 2, 1, 3), dtype=np.float64)
        t.item(1)[...] = 7
        out = t.to_numpy()
        self.assertTrue(np.all(out[1] == 7))
        self.assertTrue(np.all(out[0] == 0))
        self.assertTrue(np.all(out[2] == 0))

    def test_zeros(self):
        t = Tensor.zeros((2, 3, 4, 1), dtype=np.float64)
        self.assertEqual(t.num_elements, 24)
        self.assertEqual(t.dtype, np.dtype(np.float64))
        self.assertTrue(np.all(t.data == 0))


class TestEmptySentinel(unittest.TestCase):
    def test_empty_is_falsy_and_shared(self):
        e = Tensor.empty()
        self.assertFalse(e)
        self.assertTrue(e.is_empty())
        self.assertIs(e, Tensor.empty())
        self.assertEqual(repr(e), "Tensor.empty()")

    def test_present_tensor_is_truthy(self):
        self.assertTrue(Tensor.zeros((1,)))

    def test_reading_empty_raises(self):
        with self.assertRaises(InvalidArgumentError):
            Tensor.empty().to_numpy()


if __name__ == "__main__":
    unittest.main()
