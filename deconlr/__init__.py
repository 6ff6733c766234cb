"""deconlr - Richardson-Lucy deconvolution of 3D microscopy volumes.

Restores a blurred volume given a measured point spread function (PSF)
with a fixed number of Richardson-Lucy iterations executed on
device-resident (GPU) half-spectrum buffers.

The library is organized into these modules:

- **core**: volume geometry (dimensions, raw and PSF voxel sizes)
- **psf**: PSF conditioning (background removal, centroid, recentring)
- **otf**: OTF synthesis and resampling onto the volume's frequency grid
- **deconvolution**: PyTorch buffers, FFT plans and the RL solver
- **pipeline**: the ordered driver tying the steps together

Example:
    >>> from deconlr import DeconvConfig, DeconvLR
    >>>
    >>> decon = DeconvLR(DeconvConfig(num_iter=10, device="cuda"))
    >>> decon.set_resolution(
    ...     (0.2, 0.1, 0.1),      # raw voxel size (dz, dy, dx), microns
    ...     (0.1, 0.05, 0.05),    # PSF voxel size
    ... )
    >>> decon.set_volume_size(nx=512, ny=512, nz=64)
    >>> decon.set_psf(psf)
    >>> decon.initialize()
    >>> restored = decon.process(observed)
"""

__version__ = "0.1.0"

from .config import DeconvConfig
from .core import MAX_VOLUME_SIZE, GeometryBuilder, VolumeGeometry
from .errors import (
    ErrorKind,
    DeconvError,
    ConfigurationError,
    VolumeSizeExceededError,
    OrderingError,
    DegeneratePSFError,
    DeviceError,
)
from .psf import (
    remove_background,
    find_centroid,
    align_center,
    condition_psf,
)
from .otf import synthesize_otf
from .deconvolution import (
    DeconvolutionResult,
    IterationContext,
    RichardsonLucySolver,
    SolverState,
    richardson_lucy,
)
from .io import ImageStack
from .pipeline import DeconvLR, Phase

__all__ = [
    # Version
    "__version__",
    # Configuration and geometry
    "DeconvConfig",
    "MAX_VOLUME_SIZE",
    "GeometryBuilder",
    "VolumeGeometry",
    # Errors
    "ErrorKind",
    "DeconvError",
    "ConfigurationError",
    "VolumeSizeExceededError",
    "OrderingError",
    "DegeneratePSFError",
    "DeviceError",
    # PSF conditioning
    "remove_background",
    "find_centroid",
    "align_center",
    "condition_psf",
    # OTF
    "synthesize_otf",
    # Deconvolution
    "DeconvolutionResult",
    "IterationContext",
    "RichardsonLucySolver",
    "SolverState",
    "richardson_lucy",
    # Driver
    "ImageStack",
    "DeconvLR",
    "Phase",
]
