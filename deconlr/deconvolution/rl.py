"""Richardson-Lucy deconvolution on device-resident half-spectrum buffers.

The Richardson-Lucy (RL) algorithm is an iterative method for deconvolving
images when the noise follows a Poisson distribution (photon counting).

The algorithm iterates:
    x_{k+1} = x_k * C^T(b / C(x_k))

where:
    - x: estimate of the original volume
    - b: observed blurred volume
    - C: convolution with the PSF, C(x) = F^-1(H . F(x))
    - C^T: correlation with the PSF, C^T(y) = F^-1(conj(H) . F(y))
    - * and / are element-wise operations

Every operation writes into a buffer owned by the
:class:`~deconlr.deconvolution.context.IterationContext`; nothing is
allocated inside the loop.

Reference:
    Richardson, W.H. (1972). "Bayesian-Based Iterative Method of Image
    Restoration". JOSA 62(1): 55-59.

    Lucy, L.B. (1974). "An iterative technique for the rectification of
    observed distributions". The Astronomical Journal 79(6): 745-754.
"""

import logging
from contextlib import contextmanager
from enum import Enum
from typing import Callable, Iterator, Optional, Union

import numpy as np
import torch

from ..core.geometry import VolumeGeometry
from ..errors import ConfigurationError, DeviceError, OrderingError
from .base import DeconvolutionResult
from .context import IterationContext

__all__ = ["SolverState", "RichardsonLucySolver", "richardson_lucy"]

logger = logging.getLogger(__name__)


class SolverState(Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"
    ITERATING = "iterating"
    DONE = "done"


@contextmanager
def _device_step(operation: str) -> Iterator[None]:
    try:
        yield
    except RuntimeError as exc:
        if isinstance(exc, DeviceError):
            raise
        raise DeviceError(operation, str(exc)) from exc


class RichardsonLucySolver:
    """Fixed-iteration RL solver bound to one iteration context.

    States: UNINITIALIZED -> READY (context allocated, OTF and data loaded)
    -> ITERATING -> DONE. After :meth:`run` the context's ``io.output``
    holds the result, whatever the iteration count.

    Args:
        context: Allocated context with OTF and observed data loaded.
        eps: Ratio guard relative to the maximum of the observed data.
            Where the blurred estimate is below ``eps * max(observed)`` the
            ratio is set to 1, leaving those voxels unchanged.
        verbose: Log progress at INFO level and track the relative change
            of the estimate.
    """

    def __init__(self, context: IterationContext, eps: float = 1e-6, verbose: bool = False):
        if eps <= 0:
            raise ConfigurationError(f"eps must be positive, got {eps}")
        self.context = context
        self.eps = eps
        self.verbose = verbose
        self.iteration = 0
        self._state = SolverState.UNINITIALIZED
        self._refresh()

    def _refresh(self) -> None:
        if self._state is SolverState.UNINITIALIZED:
            if self.context.is_allocated and self.context.loaded:
                self._state = SolverState.READY

    @property
    def state(self) -> SolverState:
        self._refresh()
        return self._state

    def _ratio_threshold(self) -> float:
        peak = float(self.context.raw.max())
        if not np.isfinite(peak) or peak <= 0.0:
            return self.eps
        return self.eps * peak

    def step(self, threshold: float) -> torch.Tensor:
        """Run one RL update from ``io.input`` into ``io.output``.

        Returns:
            The freshly written estimate (``io.output``, before the swap).
        """
        ctx = self.context
        estimate, updated = ctx.io.input, ctx.io.output
        spectrum, scratch = ctx.filter_complex_a, ctx.rl_real_a
        otf = ctx.otf

        with _device_step("forward_fft"):
            ctx.forward_plan.execute(estimate, spectrum)
        with _device_step("otf_multiply"):
            spectrum.mul_(otf)
        with _device_step("inverse_fft"):
            ctx.inverse_plan.execute(spectrum, scratch)

        # scratch holds the blurred estimate; replace it by the guarded ratio
        with _device_step("ratio"):
            guard = scratch < threshold
            torch.div(ctx.raw, scratch, out=scratch)
            scratch.masked_fill_(guard, 1.0)

        with _device_step("forward_fft"):
            ctx.forward_plan.execute(scratch, spectrum)
        with _device_step("otf_conj_multiply"):
            spectrum.mul_(otf.conj())
        with _device_step("inverse_fft"):
            ctx.inverse_plan.execute(spectrum, updated)
        with _device_step("update"):
            updated.mul_(estimate).clamp_(min=0.0)

        return updated

    def run(
        self,
        num_iter: int,
        callback: Optional[Callable[[int, torch.Tensor], None]] = None,
    ) -> DeconvolutionResult:
        """Run a fixed number of RL iterations.

        Args:
            num_iter: Number of iterations (positive).
            callback: Optional function called after each iteration with
                (iteration, estimate). The estimate is the buffer just
                written; copy it to keep it.

        Returns:
            DeconvolutionResult whose ``restored`` is ``context.io.output``.

        Raises:
            OrderingError: If the solver is not READY.
            DeviceError: If any device step fails. The run is aborted.
        """
        if int(num_iter) != num_iter or num_iter < 1:
            raise ConfigurationError(f"num_iter must be a positive integer, got {num_iter}")
        state = self.state
        if state is not SolverState.READY:
            raise OrderingError(f"Solver cannot run from state {state.value}")

        ctx = self.context
        threshold = self._ratio_threshold()
        loss_history = []
        log = logger.info if self.verbose else logger.debug
        log("Richardson-Lucy: %d iterations, ratio threshold %.3g", num_iter, threshold)

        self._state = SolverState.ITERATING
        for iteration in range(1, num_iter + 1):
            updated = self.step(threshold)
            self.iteration = iteration

            if self.verbose:
                with _device_step("diagnostics"):
                    previous = ctx.io.input
                    rel_change = float(
                        torch.linalg.vector_norm(updated - previous)
                        / (torch.linalg.vector_norm(previous) + 1e-12)
                    )
                loss_history.append(rel_change)
                log("  Iteration %3d: rel. change = %.6e", iteration, rel_change)

            if callback is not None:
                callback(iteration, updated)

            ctx.io.swap()

        # The last swap moved the result into io.input; swap it back.
        ctx.io.swap()

        if ctx.device.type == "cuda":
            with _device_step("synchronize"):
                torch.cuda.synchronize(ctx.device)
        self._state = SolverState.DONE

        return DeconvolutionResult(
            restored=ctx.io.output,
            iterations=num_iter,
            loss_history=loss_history,
            metadata={"algorithm": "Richardson-Lucy", "ratio_threshold": threshold},
        )

    def result(self) -> torch.Tensor:
        if self.state is not SolverState.DONE:
            raise OrderingError("Solver has not finished")
        return self.context.io.output


def richardson_lucy(
    observed: np.ndarray,
    otf: torch.Tensor,
    num_iter: int = 10,
    eps: float = 1e-6,
    device: Union[str, torch.device, None] = None,
    callback: Optional[Callable[[int, torch.Tensor], None]] = None,
    verbose: bool = False,
) -> np.ndarray:
    """One-shot RL deconvolution of a host volume with a ready OTF.

    Args:
        observed: Observed 3D volume (z, y, x).
        otf: complex OTF of shape (nz, ny, nx // 2 + 1).
        num_iter: Number of iterations.
        eps: Relative ratio guard.
        device: Device to run on. Defaults to the OTF's device.
        callback: Optional per-iteration callback (iteration, estimate).
        verbose: Log per-iteration progress.

    Returns:
        Restored float32 volume on the host.

    Example:
        >>> otf = synthesize_otf(condition_psf(psf), geometry)
        >>> restored = richardson_lucy(observed, otf, num_iter=10)
    """
    observed = np.asarray(observed)
    geometry = VolumeGeometry(
        shape=observed.shape, voxel_size=(1.0, 1.0, 1.0), psf_voxel_size=(1.0, 1.0, 1.0)
    )
    device = otf.device if device is None else torch.device(device)
    with IterationContext.allocate(geometry, device=device, otf=otf) as ctx:
        ctx.load(observed)
        RichardsonLucySolver(ctx, eps=eps, verbose=verbose).run(num_iter, callback=callback)
        return ctx.read()
