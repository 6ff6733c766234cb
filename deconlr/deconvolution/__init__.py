"""Richardson-Lucy deconvolution on device-resident buffers using PyTorch.

The deconvolution problem is formulated as:
    b = C(x) + noise

where:
    - b: observed blurred volume
    - x: unknown original volume
    - C: forward operator (convolution with PSF, applied via the OTF)

Example:
    >>> from deconlr.deconvolution import IterationContext, RichardsonLucySolver
    >>> with IterationContext.allocate(geometry, device="cuda", otf=otf) as ctx:
    ...     ctx.load(observed)
    ...     RichardsonLucySolver(ctx).run(num_iter=10)
    ...     restored = ctx.read()
"""

from .base import (
    DeconvolutionResult,
)
from .context import (
    FFTPlan,
    IOBuffers,
    IterationContext,
)
from .rl import (
    SolverState,
    RichardsonLucySolver,
    richardson_lucy,
)

__all__ = [
    # Base types
    "DeconvolutionResult",
    # Device resources
    "FFTPlan",
    "IOBuffers",
    "IterationContext",
    # Richardson-Lucy
    "SolverState",
    "RichardsonLucySolver",
    "richardson_lucy",
]
