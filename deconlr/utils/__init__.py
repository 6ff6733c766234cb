"""Shared utilities: Fourier grids and host/device transfer."""

from .fourier import (
    fftfreq,
    rfftfreq,
    fft_coords,
    rfft_coords,
)
from .transfer import host_registered, to_device

__all__ = [
    # Fourier utilities
    "fftfreq",
    "rfftfreq",
    "fft_coords",
    "rfft_coords",
    # Transfer
    "host_registered",
    "to_device",
]
