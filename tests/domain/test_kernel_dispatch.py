import unittest
from dataclasses import dataclass

from convcore.domain._errors import (
    DTypeMismatchError,
    DeviceMismatchError,
    ErrorCode,
    InvalidArgumentError,
    UnsupportedError,
)
from convcore.domain.device._device import Device, DeviceType
from convcore.domain.utils._kernel_dispatch import (
    KernelRegistry,
    create_kernel_builder,
    resolve_placement,
)


@dataclass
class FakeTensor:
    device: Device
    dtype_name: str
    absent: bool = False

    def is_empty(self) -> bool:
        return self.absent


class FakeContext:
    def __init__(self):
        self.code = ErrorCode.SUCCESS
        self.message = ""

    def set_error(self, code, message):
        self.code = code
        self.message = message
        return code


CPU = Device("cpu")
CUDA0 = Device("cuda:0")


class TestResolvePlacement(unittest.TestCase):
    def test_agreeing_tensors(self):
        device, dtype = resolve_placement(
            FakeTensor(CPU, "float32"), FakeTensor(CPU, "float32")
        )
        self.assertEqual(device, CPU)
        self.assertEqual(dtype, "float32")

    def test_absent_tensors_and_plain_values_are_ignored(self):
        device, dtype = resolve_placement(
            FakeTensor(CUDA0, "float64", absent=True),
            3,
            "n",
            FakeTensor(CPU, "float64"),
        )
        self.assertEqual(device, CPU)
        self.assertEqual(dtype, "float64")

    def test_device_mismatch(self):
        with self.assertRaises(DeviceMismatchError) as cm:
            resolve_placement(FakeTensor(CPU, "float32"), FakeTensor(CUDA0, "float32"))
        self.assertEqual(cm.exception.code, ErrorCode.INVALID_ARGUMENT)

    def test_dtype_mismatch(self):
        with self.assertRaises(DTypeMismatchError) as cm:
            resolve_placement(FakeTensor(CPU, "float32"), FakeTensor(CPU, "float64"))
        self.assertEqual(cm.exception.code, ErrorCode.INVALID_ARGUMENT)

    def test_no_tensor_present(self):
        with self.assertRaises(InvalidArgumentError):
            resolve_placement(FakeTensor(CPU, "float32", absent=True), 1.0)


class TestKernelRegistry(unittest.TestCase):
    def test_register_and_resolve_each_dtype(self):
        reg = KernelRegistry()

        @reg.register("scale", DeviceType.CPU, "float32", "float64")
        def scale_cpu():
            return "cpu"

        self.assertIs(reg.resolve("scale", DeviceType.CPU, "float32"), scale_cpu)
        self.assertIs(reg.resolve("scale", DeviceType.CPU, "float64"), scale_cpu)
        self.assertIn(("scale", DeviceType.CPU, "float32"), reg)
        self.assertEqual(
            sorted(reg.placements("scale"), key=lambda p: p[1]),
            [(DeviceType.CPU, "float32"), (DeviceType.CPU, "float64")],
        )

    def test_missing_entry_is_unsupported(self):
        reg = KernelRegistry()
        with self.assertRaises(UnsupportedError) as cm:
            reg.resolve("scale", DeviceType.CUDA, "float32")
        self.assertEqual(cm.exception.code, ErrorCode.UNSUPPORTED)
        self.assertEqual(cm.exception.op, "scale")

    def test_duplicate_registration_rejected(self):
        reg = KernelRegistry()
        reg.register("scale", DeviceType.CPU, "float32")(lambda: None)
        with self.assertRaises(ValueError):
            reg.register("scale", DeviceType.CPU, "float32")(lambda: None)

    def test_register_requires_a_dtype(self):
        with self.assertRaises(ValueError):
            KernelRegistry().register("scale", DeviceType.CPU)


class TestCreateKernelBuilder(unittest.TestCase):
    def setUp(self):
        kernel = create_kernel_builder()
        calls = []

        class Scale:
            def __init__(self, context):
                self.context = context

            def forward(self, output, input, factor=1.0):
                raise NotImplementedError

        @kernel(Scale, Scale.forward, DeviceType.CPU, "float32")
        def _forward_f32(self, output, input, factor=1.0):
            calls.append(("float32", factor))
            if factor < 0:
                raise InvalidArgumentError("negative factor")

        @kernel(Scale, Scale.forward, DeviceType.CUDA, "float32")
        def _forward_cuda_f32(self, output, input, factor=1.0):
            calls.append(("cuda", factor))

        self.Scale = Scale
        self.calls = calls
        self.ctx = FakeContext()

    def test_routes_by_placement_and_returns_success(self):
        op = self.Scale(self.ctx)
        status = op.forward(FakeTensor(CPU, "float32"), FakeTensor(CPU, "float32"), 2.0)
        self.assertEqual(status, ErrorCode.SUCCESS)
        self.assertEqual(self.calls, [("float32", 2.0)])

        status = op.forward(
            FakeTensor(CUDA0, "float32"), FakeTensor(CUDA0, "float32"), factor=3.0
        )
        self.assertEqual(status, ErrorCode.SUCCESS)
        self.assertEqual(self.calls[-1], ("cuda", 3.0))

    def test_kernel_error_becomes_return_code(self):
        op = self.Scale(self.ctx)
        status = op.forward(FakeTensor(CPU, "float32"), FakeTensor(CPU, "float32"), -1.0)
        self.assertEqual(status, ErrorCode.INVALID_ARGUMENT)
        self.assertEqual(self.ctx.code, ErrorCode.INVALID_ARGUMENT)
        self.assertTrue(self.ctx.message.startswith("Scale.forward:"))
        self.assertIn("negative factor", self.ctx.message)

    def test_unregistered_dtype_is_unsupported(self):
        op = self.Scale(self.ctx)
        status = op.forward(FakeTensor(CPU, "float64"), FakeTensor(CPU, "float64"))
        self.assertEqual(status, ErrorCode.UNSUPPORTED)
        self.assertEqual(self.calls, [])

    def test_mismatched_operands_never_reach_a_kernel(self):
        op = self.Scale(self.ctx)
        status = op.forward(FakeTensor(CPU, "float32"), FakeTensor(CUDA0, "float32"))
        self.assertEqual(status, ErrorCode.INVALID_ARGUMENT)
        self.assertEqual(self.calls, [])

    def test_wrapper_keeps_method_name(self):
        self.assertEqual(self.Scale.forward.__name__, "forward")

    def test_missing_context_raises(self):
        op = self.Scale.__new__(self.Scale)
        with self.assertRaises(NotImplementedError):
            op.forward(FakeTensor(CPU, "float32"), FakeTensor(CPU, "float32"))


if __name__ == "__main__":
    unittest.main()
