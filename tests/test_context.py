"""Tests for device buffer ownership, FFT plans and host transfer."""

import numpy as np
import pytest
import torch

from deconlr import (
    ConfigurationError,
    DeviceError,
    ErrorKind,
    IterationContext,
    OrderingError,
    VolumeGeometry,
)
from deconlr.deconvolution import FFTPlan, IOBuffers
from deconlr.deconvolution import context as context_module
from deconlr.utils import host_registered, to_device


def make_geometry(shape):
    return VolumeGeometry(shape=shape, voxel_size=(1, 1, 1), psf_voxel_size=(1, 1, 1))


class TestAllocation:
    @pytest.mark.parametrize("shape", [(8, 16, 16), (5, 6, 15)])
    def test_buffer_shapes_follow_geometry(self, shape):
        geom = make_geometry(shape)
        with IterationContext.allocate(geom) as ctx:
            assert ctx.is_allocated
            for buf in (ctx.raw, ctx.io.input, ctx.io.output, ctx.rl_real_a):
                assert tuple(buf.shape) == shape
                assert buf.dtype == torch.float32
                assert buf.numel() == geom.real_size
            for buf in (ctx.filter_complex_a, ctx.otf):
                assert tuple(buf.shape) == geom.complex_shape
                assert buf.dtype == torch.complex64
                assert buf.numel() == geom.complex_size
            assert ctx.forward_plan.shape == shape
            assert ctx.inverse_plan.direction == FFTPlan.C2R

    def test_adopts_otf(self):
        geom = make_geometry((8, 8, 8))
        otf = torch.ones(geom.complex_shape, dtype=torch.complex64)
        with IterationContext.allocate(geom, otf=otf) as ctx:
            assert torch.equal(ctx.otf, otf)

    def test_rejects_misshaped_otf(self):
        geom = make_geometry((8, 8, 8))
        with pytest.raises(ConfigurationError, match="half-spectrum"):
            IterationContext.allocate(geom, otf=torch.ones((8, 8, 8), dtype=torch.complex64))

    def test_requires_geometry(self):
        with pytest.raises(ConfigurationError):
            IterationContext(None)

    def test_partial_failure_rolls_back(self, monkeypatch):
        real_empty = torch.empty
        calls = {"n": 0}

        def failing_empty(*args, **kwargs):
            calls["n"] += 1
            if calls["n"] == 3:
                raise RuntimeError("CUDA out of memory")
            return real_empty(*args, **kwargs)

        released = []
        original_release = IterationContext.release

        def tracking_release(self):
            released.append(self)
            original_release(self)

        monkeypatch.setattr(context_module.torch, "empty", failing_empty)
        monkeypatch.setattr(IterationContext, "release", tracking_release)

        with pytest.raises(DeviceError) as excinfo:
            IterationContext.allocate(make_geometry((8, 8, 8)))

        assert excinfo.value.operation == "allocate"
        assert excinfo.value.kind is ErrorKind.DEVICE
        assert not excinfo.value.recoverable
        assert len(released) == 1
        assert released[0].raw is None
        assert not released[0].is_allocated


class TestRelease:
    def test_release_is_idempotent(self):
        ctx = IterationContext.allocate(make_geometry((4, 4, 4)))
        ctx.release()
        ctx.release()
        assert not ctx.is_allocated
        assert ctx.io is None

    def test_release_on_unallocated_context(self):
        ctx = IterationContext(make_geometry((4, 4, 4)))
        ctx.release()
        assert not ctx.is_allocated

    def test_context_manager_releases(self):
        with IterationContext.allocate(make_geometry((4, 4, 4))) as ctx:
            pass
        assert not ctx.is_allocated


class TestFFTNormalization:
    @pytest.mark.parametrize("shape", [(8, 16, 16), (7, 9, 11)])
    def test_forward_inverse_round_trip(self, shape):
        rng = np.random.default_rng(0)
        volume = rng.random(shape, dtype=np.float32) * 100.0

        with IterationContext.allocate(make_geometry(shape)) as ctx:
            x = torch.from_numpy(volume)
            ctx.forward_plan.execute(x, ctx.filter_complex_a)
            ctx.inverse_plan.execute(ctx.filter_complex_a, ctx.rl_real_a)
            np.testing.assert_allclose(ctx.rl_real_a.numpy(), volume, rtol=1e-4, atol=1e-3)

    def test_forward_plan_is_unscaled(self):
        shape = (4, 4, 4)
        with IterationContext.allocate(make_geometry(shape)) as ctx:
            ctx.forward_plan.execute(torch.ones(shape), ctx.filter_complex_a)
            assert ctx.filter_complex_a[0, 0, 0].real.item() == pytest.approx(64.0)

    def test_unknown_direction(self):
        with pytest.raises(ConfigurationError):
            FFTPlan((4, 4, 4), "c2c")


class TestLoadAndRead:
    def test_load_casts_and_seeds_estimate(self):
        shape = (4, 6, 8)
        volume = np.arange(np.prod(shape), dtype=np.uint16).reshape(shape)
        with IterationContext.allocate(make_geometry(shape)) as ctx:
            ctx.load(volume)
            assert ctx.loaded
            np.testing.assert_array_equal(ctx.raw.numpy(), volume.astype(np.float32))
            np.testing.assert_array_equal(ctx.io.input.numpy(), volume.astype(np.float32))

    def test_negative_samples_clamped_in_estimate(self):
        volume = np.full((4, 4, 4), -1.0, dtype=np.float32)
        with IterationContext.allocate(make_geometry((4, 4, 4))) as ctx:
            ctx.load(volume)
            assert ctx.raw.min().item() == -1.0
            assert ctx.io.input.min().item() == 0.0

    def test_shape_mismatch(self):
        with IterationContext.allocate(make_geometry((4, 4, 4))) as ctx:
            with pytest.raises(ConfigurationError, match="does not match"):
                ctx.load(np.zeros((4, 4, 5)))

    def test_load_before_allocation(self):
        ctx = IterationContext(make_geometry((4, 4, 4)))
        with pytest.raises(OrderingError):
            ctx.load(np.zeros((4, 4, 4)))

    def test_read_returns_a_copy(self):
        with IterationContext.allocate(make_geometry((4, 4, 4))) as ctx:
            ctx.io.output.fill_(2.0)
            result = ctx.read()
            ctx.io.output.fill_(5.0)
            assert np.all(result == 2.0)


class TestIOBuffers:
    def test_swap_exchanges_roles(self):
        a, b = torch.zeros(2), torch.ones(2)
        io = IOBuffers(a, b)
        io.swap()
        assert io.input is b and io.output is a
        io.swap()
        assert io.input is a and io.output is b
        assert io.swaps == 2


class TestTransfer:
    def test_host_registration_is_noop_on_cpu(self):
        array = np.ones((2, 2, 2), dtype=np.float32)
        with host_registered(array, torch.device("cpu")) as staged:
            assert staged is array

    def test_registration_undone_when_transfer_fails(self, monkeypatch):
        calls = []

        class RecordingRuntime:
            def cudaHostRegister(self, ptr, nbytes, flags):
                calls.append(("register", ptr, nbytes))
                return 0

            def cudaHostUnregister(self, ptr):
                calls.append(("unregister", ptr))
                return 0

        monkeypatch.setattr(torch.cuda, "cudart", lambda: RecordingRuntime())
        array = np.ones((2, 3, 4), dtype=np.float32)

        with pytest.raises(RuntimeError, match="copy failed"):
            with host_registered(array, torch.device("cuda")):
                raise RuntimeError("copy failed")

        ptr = array.ctypes.data
        assert calls == [("register", ptr, array.nbytes), ("unregister", ptr)]

    def test_failed_registration_raises_device_error(self, monkeypatch):
        class FailingRuntime:
            def cudaHostRegister(self, ptr, nbytes, flags):
                return 1

            def cudaHostUnregister(self, ptr):
                raise AssertionError("nothing was registered")

        monkeypatch.setattr(torch.cuda, "cudart", lambda: FailingRuntime())

        with pytest.raises(DeviceError) as excinfo:
            with host_registered(np.ones(4, dtype=np.float32), torch.device("cuda")):
                pass
        assert excinfo.value.operation == "host_register"

    def test_to_device_casts_to_float32(self):
        tensor = to_device(np.arange(8, dtype=np.uint16).reshape(2, 2, 2), torch.device("cpu"))
        assert tensor.dtype == torch.float32
        assert tensor.sum().item() == 28.0
