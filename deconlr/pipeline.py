"""Deconvolution driver: configuration, PSF submission, initialization, processing.

The steps must be called in this order::

    decon = DeconvLR(DeconvConfig(num_iter=10))
    decon.set_resolution((0.2, 0.1, 0.1), (0.1, 0.05, 0.05))  # (dz, dy, dx)
    decon.set_volume_size(nx, ny, nz)
    decon.set_psf(psf)
    decon.initialize()
    restored = decon.process(observed)

Calls out of order raise :class:`~deconlr.errors.OrderingError`. The
geometry is finalized when the PSF is submitted and is immutable afterwards.
"""

import logging
from enum import Enum
from pathlib import Path
from typing import Optional, Sequence

import numpy as np
import torch

from .config import DeconvConfig
from .core.geometry import GeometryBuilder, VolumeGeometry
from .deconvolution.base import DeconvolutionResult
from .deconvolution.context import IterationContext
from .deconvolution.rl import RichardsonLucySolver
from .errors import ConfigurationError, DeviceError, OrderingError
from .io.stack import ImageStack
from .otf.synthesis import synthesize_otf
from .psf.conditioning import condition_psf

__all__ = ["Phase", "DeconvLR"]

logger = logging.getLogger(__name__)


class Phase(Enum):
    CONFIGURING = "configuring"
    READY = "ready"
    ITERATING = "iterating"
    DONE = "done"


class DeconvLR:
    """Richardson-Lucy deconvolution of 3D volumes with a measured PSF.

    Args:
        config: Run configuration. Defaults to ``DeconvConfig()``.

    Attributes:
        geometry: The finalized geometry, set by :meth:`set_psf`.
        last_result: Result of the most recent :meth:`process` call.
    """

    def __init__(self, config: Optional[DeconvConfig] = None):
        self.config = config if config is not None else DeconvConfig()
        self.device = self.config.torch_device
        self.geometry: Optional[VolumeGeometry] = None
        self.last_result: Optional[DeconvolutionResult] = None
        self._builder = GeometryBuilder()
        self._otf: Optional[torch.Tensor] = None
        self._context: Optional[IterationContext] = None
        self._phase = Phase.CONFIGURING

    @property
    def phase(self) -> Phase:
        return self._phase

    def _require(self, *phases: Phase, action: str) -> None:
        if self._phase not in phases:
            allowed = ", ".join(p.value for p in phases)
            raise OrderingError(
                f"{action}() is not allowed in phase '{self._phase.value}' (requires {allowed})"
            )

    def _require_unsubmitted(self, action: str) -> None:
        self._require(Phase.CONFIGURING, action=action)
        if self.geometry is not None:
            raise OrderingError(f"{action}() must be called before set_psf()")

    def set_resolution(
        self, voxel_size: Sequence[float], psf_voxel_size: Sequence[float]
    ) -> None:
        """Set raw-data and PSF voxel sizes, each as (dz, dy, dx)."""
        self._require_unsubmitted("set_resolution")
        self._builder.set_resolution(voxel_size, psf_voxel_size)
        logger.debug("Resolution: raw %s, PSF %s", tuple(voxel_size), tuple(psf_voxel_size))

    def set_volume_size(self, nx: int, ny: int, nz: int) -> None:
        """Set the volume size; each axis must be at most 2048."""
        self._require_unsubmitted("set_volume_size")
        self._builder.set_volume_size(nx, ny, nz)
        logger.debug("Volume size: nx=%d, ny=%d, nz=%d", nx, ny, nz)

    def set_psf(self, psf) -> None:
        """Condition the PSF and synthesize the OTF for the configured volume.

        The PSF (array or :class:`ImageStack`) is not retained.
        """
        self._require_unsubmitted("set_psf")
        if not self._builder.is_complete:
            raise OrderingError(
                "set_resolution() and set_volume_size() must be called before set_psf()"
            )
        geometry = self._builder.build()

        conditioned = condition_psf(np.asarray(psf), background=self.config.background)
        self._dump("psf_aligned", conditioned)
        otf = synthesize_otf(conditioned, geometry, device=self.device, fill=self.config.otf_fill)
        del conditioned

        if self.config.debug_dir is not None:
            magnitude = torch.fft.fftshift(otf.abs(), dim=(0, 1))
            self._dump("otf_magnitude", magnitude.cpu().numpy())

        self.geometry = geometry
        self._otf = otf

    def initialize(self) -> None:
        """Allocate the iteration context and hand the OTF over to it."""
        self._require(Phase.CONFIGURING, action="initialize")
        if self._otf is None:
            raise OrderingError("set_psf() must be called before initialize()")
        self._context = IterationContext.allocate(self.geometry, device=self.device, otf=self._otf)
        self._otf = None
        self._phase = Phase.READY

    def process(self, volume, out: Optional[np.ndarray] = None) -> np.ndarray:
        """Deconvolve one observed volume.

        Args:
            volume: Observed volume (z, y, x), array or :class:`ImageStack`,
                matching the configured volume size.
            out: Optional output array of the same shape. Integer outputs
                are rounded and clipped.

        Returns:
            The restored volume (``out`` if given, else float32).

        Raises:
            DeviceError: On device failure. The context is released and the
                driver returns to the configuring phase.
        """
        self._require(Phase.READY, Phase.DONE, action="process")
        volume = np.asarray(volume)
        if volume.shape != self.geometry.shape:
            raise ConfigurationError(
                f"Volume shape {volume.shape} does not match configured size {self.geometry.shape}"
            )
        if out is not None and out.shape != volume.shape:
            raise ConfigurationError(
                f"Output shape {out.shape} does not match volume shape {volume.shape}"
            )

        self._phase = Phase.ITERATING
        try:
            self._context.load(volume)
            solver = RichardsonLucySolver(
                self._context, eps=self.config.eps, verbose=self.config.verbose
            )
            self.last_result = solver.run(self.config.num_iter)
            restored = self._context.read()
        except DeviceError as exc:
            logger.error("Deconvolution aborted: %s", exc)
            self.close()
            raise
        except Exception:
            self._phase = Phase.READY
            raise
        self._phase = Phase.DONE

        if out is None:
            return restored
        out[...] = ImageStack(restored).astype(out.dtype).data
        return out

    def close(self) -> None:
        """Release device resources. The driver must be reconfigured to run again."""
        if self._context is not None:
            self._context.release()
            self._context = None
        self._otf = None
        self.geometry = None
        self._phase = Phase.CONFIGURING

    def __enter__(self) -> "DeconvLR":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _dump(self, name: str, array: np.ndarray) -> None:
        if self.config.debug_dir is None:
            return
        path = ImageStack(array).save(Path(self.config.debug_dir) / f"{name}.tif")
        logger.info("Wrote diagnostic %s", path)
