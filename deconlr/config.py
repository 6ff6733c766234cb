"""Run configuration for the deconvolution pipeline."""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

import torch

from .errors import ConfigurationError
from .otf.synthesis import FILL_MODES

__all__ = ["DeconvConfig", "resolve_device"]


@dataclass(frozen=True)
class DeconvConfig:
    """Immutable parameters of one deconvolution run.

    Attributes:
        num_iter: Fixed number of Richardson-Lucy iterations.
        eps: Ratio guard, relative to the maximum of the observed data.
            Where the blurred estimate falls below ``eps * max(observed)``
            the RL ratio is replaced by 1.
        device: Torch device string. None selects "cuda" when available,
            otherwise "cpu".
        background: Explicit PSF background level. None estimates it from
            the outer faces of the PSF volume.
        otf_fill: Policy for target frequencies outside the template OTF
            support, "zero" or "nearest".
        debug_dir: Directory for diagnostic TIFF dumps (aligned PSF, OTF
            magnitude). None disables the dumps.
        verbose: Log per-iteration progress at INFO level.

    Example:
        >>> config = DeconvConfig(num_iter=20, device="cuda")
    """

    num_iter: int = 10
    eps: float = 1e-6
    device: Optional[str] = None
    background: Optional[float] = None
    otf_fill: str = "zero"
    debug_dir: Optional[Union[str, Path]] = None
    verbose: bool = False

    def __post_init__(self) -> None:
        """Validate run parameters."""
        if int(self.num_iter) != self.num_iter or self.num_iter < 1:
            raise ConfigurationError(
                f"num_iter must be a positive integer, got {self.num_iter}"
            )
        if self.eps <= 0:
            raise ConfigurationError(f"eps must be positive, got {self.eps}")
        if self.background is not None and self.background < 0:
            raise ConfigurationError(
                f"background must be non-negative, got {self.background}"
            )
        if self.otf_fill not in FILL_MODES:
            raise ConfigurationError(
                f"Unknown OTF fill mode: {self.otf_fill}. Use 'zero' or 'nearest'."
            )

    @property
    def torch_device(self) -> torch.device:
        return resolve_device(self.device)


def resolve_device(device: Optional[Union[str, torch.device]] = None) -> torch.device:
    """Return the requested torch device, defaulting to CUDA when present."""
    if device is None:
        return torch.device("cuda" if torch.cuda.is_available() else "cpu")
    try:
        return torch.device(device)
    except RuntimeError as exc:
        raise ConfigurationError(f"Invalid device: {device!r}") from exc
