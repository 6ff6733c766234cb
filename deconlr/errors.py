"""Error taxonomy for the deconvolution pipeline.

Errors are split by kind so callers can branch on them deliberately:

- **configuration**: invalid geometry or run parameters, reported at the
  offending setter call.
- **ordering**: a pipeline step was invoked before its prerequisites.
- **degenerate input**: the PSF cannot be conditioned (e.g. zero intensity).
- **device**: allocation, FFT or kernel failure on the compute device.

The first three are recoverable by the caller. Device errors are fatal for
the current run; the resources acquired so far are released before raising.
"""

from enum import Enum
from typing import Optional

__all__ = [
    "ErrorKind",
    "DeconvError",
    "ConfigurationError",
    "VolumeSizeExceededError",
    "OrderingError",
    "DegeneratePSFError",
    "DeviceError",
]


class ErrorKind(Enum):
    CONFIGURATION = "configuration"
    ORDERING = "ordering"
    DEGENERATE_INPUT = "degenerate_input"
    DEVICE = "device"


class DeconvError(Exception):
    """Base class for deconvolution errors."""

    kind: ErrorKind = ErrorKind.CONFIGURATION

    @property
    def recoverable(self) -> bool:
        return self.kind is not ErrorKind.DEVICE


class ConfigurationError(DeconvError, ValueError):
    kind = ErrorKind.CONFIGURATION


class VolumeSizeExceededError(ConfigurationError):
    """Raised when a volume dimension exceeds the supported ceiling."""


class OrderingError(DeconvError, RuntimeError):
    """Raised when a pipeline step is called out of order."""

    kind = ErrorKind.ORDERING


class DegeneratePSFError(DeconvError, ValueError):
    kind = ErrorKind.DEGENERATE_INPUT


class DeviceError(DeconvError, RuntimeError):
    """Fatal failure on the compute device.

    Attributes:
        operation: Name of the step that failed (e.g. "allocate", "forward_fft").
    """

    kind = ErrorKind.DEVICE

    def __init__(self, operation: str, message: Optional[str] = None):
        self.operation = operation
        text = f"device operation '{operation}' failed"
        if message:
            text = f"{text}: {message}"
        super().__init__(text)
