import os
import unittest
from unittest import mock

from convcore.domain.device._device import Device, DeviceType, default_cuda_index


class TestDevice(unittest.TestCase):
    def test_cpu(self):
        d = Device("cpu")
        self.assertTrue(d.is_cpu())
        self.assertFalse(d.is_cuda())
        self.assertIs(d.type, DeviceType.CPU)
        self.assertIsNone(d.index)
        self.assertEqual(str(d), "cpu")

    def test_cuda_with_index(self):
        d = Device("cuda:2")
        self.assertTrue(d.is_cuda())
        self.assertEqual(d.index, 2)
        self.assertEqual(str(d), "cuda:2")
        self.assertEqual(repr(d), "Device('cuda:2')")

    def test_bare_cuda_uses_environment_index(self):
        with mock.patch.dict(os.environ, {"CONVCORE_CUDA_DEVICE": "3"}):
            self.assertEqual(Device("cuda").index, 3)
        with mock.patch.dict(os.environ, {"CONVCORE_CUDA_DEVICE": ""}):
            self.assertEqual(Device("cuda").index, 0)

    def test_bad_environment_index(self):
        with mock.patch.dict(os.environ, {"CONVCORE_CUDA_DEVICE": "gpu0"}):
            with self.assertRaises(ValueError):
                default_cuda_index()

    def test_invalid_strings(self):
        for s in ("gpu", "cuda:", "cuda:-1", "CPU", "cuda:1:2"):
            with self.subTest(s=s):
                with self.assertRaises(ValueError):
                    Device(s)

    def test_equality_and_hash(self):
        self.assertEqual(Device("cuda:1"), Device("cuda:1"))
        self.assertNotEqual(Device("cuda:0"), Device("cuda:1"))
        self.assertNotEqual(Device("cpu"), Device("cuda:0"))
        self.assertEqual(len({Device("cpu"), Device("cpu"), Device("cuda:0")}), 2)


if __name__ == "__main__":
    unittest.main()
