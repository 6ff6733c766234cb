"""Device-resident buffers and FFT plans for one deconvolution run.

All buffers are sized from a finalized :class:`VolumeGeometry` and are never
resized during the run:

- ``raw``: observed volume cast to float32, kept untouched.
- ``io.input`` / ``io.output``: ping-pong estimate buffers, (nz, ny, nx).
- ``filter_complex_a``: frequency-domain scratch, (nz, ny, nx // 2 + 1).
- ``rl_real_a``: real scratch for the blurred estimate and the RL ratio.
- ``otf``: complex half-spectrum, read-only while iterating.

Element counts follow the real-FFT contract: ``nx * ny * nz`` for real
buffers and ``(nx // 2 + 1) * ny * nz`` for complex ones.
"""

import logging
from typing import Optional, Tuple, Union

import numpy as np
import torch

from ..core.geometry import VolumeGeometry
from ..errors import ConfigurationError, DeviceError, OrderingError
from ..utils.transfer import host_registered

__all__ = ["FFTPlan", "IOBuffers", "IterationContext"]

logger = logging.getLogger(__name__)

_DIMS = (0, 1, 2)


class FFTPlan:
    """A real 3D FFT bound to one volume shape.

    The forward (R2C) plan is unscaled; the inverse (C2R) plan applies 1/N,
    so a forward/inverse pair is the identity.

    Attributes:
        shape: Real-space shape (nz, ny, nx).
        direction: "r2c" or "c2r".
    """

    R2C = "r2c"
    C2R = "c2r"

    def __init__(self, shape: Tuple[int, int, int], direction: str):
        if direction not in (self.R2C, self.C2R):
            raise ConfigurationError(f"Unknown FFT direction: {direction}")
        self.shape = tuple(shape)
        self.direction = direction
        self.complex_shape = (shape[0], shape[1], shape[2] // 2 + 1)

    def execute(self, src: torch.Tensor, out: torch.Tensor) -> torch.Tensor:
        """Transform ``src`` into the preallocated buffer ``out``."""
        if self.direction == self.R2C:
            return torch.fft.rfftn(src, dim=_DIMS, norm="backward", out=out)
        return torch.fft.irfftn(src, s=self.shape, dim=_DIMS, norm="backward", out=out)

    def __repr__(self) -> str:
        return f"FFTPlan(shape={self.shape}, direction={self.direction!r})"


class IOBuffers:
    """Ping-pong pair of estimate buffers.

    Each iteration reads ``input`` and writes ``output``; :meth:`swap` then
    exchanges the roles without copying.
    """

    def __init__(self, input: torch.Tensor, output: torch.Tensor):
        self.input = input
        self.output = output
        self.swaps = 0

    def swap(self) -> None:
        self.input, self.output = self.output, self.input
        self.swaps += 1


class IterationContext:
    """Owner of every device buffer and FFT plan of a run.

    Use :meth:`allocate` to build a fully allocated context. Allocation is
    all-or-nothing: on failure the buffers acquired so far are released and
    a :class:`DeviceError` is raised. :meth:`release` is idempotent.

    Example:
        >>> with IterationContext.allocate(geometry, device="cuda", otf=otf) as ctx:
        ...     ctx.load(observed)
        ...     RichardsonLucySolver(ctx).run(10)
        ...     restored = ctx.read()
    """

    def __init__(self, geometry: VolumeGeometry, device: Union[str, torch.device] = "cpu"):
        if not isinstance(geometry, VolumeGeometry):
            raise ConfigurationError(
                "IterationContext requires a finalized VolumeGeometry, got "
                f"{type(geometry).__name__}"
            )
        self.geometry = geometry
        self.device = torch.device(device)

        self.raw: Optional[torch.Tensor] = None
        self.io: Optional[IOBuffers] = None
        self.filter_complex_a: Optional[torch.Tensor] = None
        self.rl_real_a: Optional[torch.Tensor] = None
        self.otf: Optional[torch.Tensor] = None
        self.forward_plan: Optional[FFTPlan] = None
        self.inverse_plan: Optional[FFTPlan] = None
        self.loaded = False

    @classmethod
    def allocate(
        cls,
        geometry: VolumeGeometry,
        device: Union[str, torch.device] = "cpu",
        otf: Optional[torch.Tensor] = None,
    ) -> "IterationContext":
        """Allocate all buffers and plans.

        Args:
            geometry: Finalized volume geometry.
            device: Device for every buffer.
            otf: Optional OTF to adopt. Must have ``geometry.complex_shape``.
                If None, an empty OTF buffer is allocated for
                :func:`deconlr.otf.synthesize_otf` to fill via ``out=``.
        """
        ctx = cls(geometry, device)
        ctx._allocate(otf)
        return ctx

    def _allocate(self, otf: Optional[torch.Tensor]) -> None:
        real_shape = self.geometry.real_shape
        complex_shape = self.geometry.complex_shape
        try:
            self.raw = torch.empty(real_shape, dtype=torch.float32, device=self.device)
            self.io = IOBuffers(
                torch.empty(real_shape, dtype=torch.float32, device=self.device),
                torch.empty(real_shape, dtype=torch.float32, device=self.device),
            )
            self.filter_complex_a = torch.empty(
                complex_shape, dtype=torch.complex64, device=self.device
            )
            self.rl_real_a = torch.empty(real_shape, dtype=torch.float32, device=self.device)
            if otf is None:
                self.otf = torch.zeros(complex_shape, dtype=torch.complex64, device=self.device)
            else:
                self.adopt_otf(otf)
            self.forward_plan = FFTPlan(real_shape, FFTPlan.R2C)
            self.inverse_plan = FFTPlan(real_shape, FFTPlan.C2R)
        except ConfigurationError:
            self.release()
            raise
        except RuntimeError as exc:
            self.release()
            raise DeviceError("allocate", str(exc)) from exc

        logger.info(
            "Iteration context allocated on %s: real %s (%d), complex %s (%d)",
            self.device,
            real_shape,
            self.geometry.real_size,
            complex_shape,
            self.geometry.complex_size,
        )

    def adopt_otf(self, otf: torch.Tensor) -> None:
        """Take ownership of a synthesized OTF."""
        expected = self.geometry.complex_shape
        if tuple(otf.shape) != expected:
            raise ConfigurationError(
                f"OTF shape {tuple(otf.shape)} does not match volume half-spectrum {expected}"
            )
        self.otf = otf.to(device=self.device, dtype=torch.complex64)

    @property
    def is_allocated(self) -> bool:
        return (
            self.raw is not None
            and self.io is not None
            and self.filter_complex_a is not None
            and self.rl_real_a is not None
            and self.otf is not None
            and self.forward_plan is not None
            and self.inverse_plan is not None
        )

    def _require_allocated(self) -> None:
        if not self.is_allocated:
            raise OrderingError("IterationContext is not allocated")

    def load(self, volume: np.ndarray) -> None:
        """Copy the observed volume to the device and seed the estimate.

        The host array is cast to float32 and pinned for the transfer.
        The initial estimate is the observed data clamped at zero.
        """
        self._require_allocated()
        volume = np.asarray(volume)
        if volume.shape != self.geometry.shape:
            raise ConfigurationError(
                f"Volume shape {volume.shape} does not match geometry {self.geometry.shape}"
            )

        staged = np.ascontiguousarray(volume, dtype=np.float32)
        try:
            with host_registered(staged, self.device):
                self.raw.copy_(torch.from_numpy(staged))
                if self.device.type == "cuda":
                    torch.cuda.synchronize(self.device)
            self.io.input.copy_(self.raw).clamp_(min=0.0)
            self.io.output.zero_()
        except DeviceError:
            raise
        except RuntimeError as exc:
            raise DeviceError("host_to_device", str(exc)) from exc
        self.loaded = True

    def read(self) -> np.ndarray:
        """Copy the final estimate (``io.output``) back to the host."""
        self._require_allocated()
        try:
            return self.io.output.detach().to("cpu", copy=True).numpy()
        except RuntimeError as exc:
            raise DeviceError("device_to_host", str(exc)) from exc

    def release(self) -> None:
        """Free all buffers and plans. Safe to call more than once."""
        was_allocated = self.raw is not None or self.otf is not None
        self.raw = None
        self.io = None
        self.filter_complex_a = None
        self.rl_real_a = None
        self.otf = None
        self.forward_plan = None
        self.inverse_plan = None
        self.loaded = False
        if was_allocated:
            if self.device.type == "cuda":
                torch.cuda.empty_cache()
            logger.debug("Iteration context released")

    def __enter__(self) -> "IterationContext":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
