"""Fourier grid utilities."""

import numpy as np
from numpy.fft import fftfreq, rfftfreq

__all__ = ["fftfreq", "rfftfreq", "fft_coords", "rfft_coords"]


def fft_coords(n: int, spacing: float = 1.0) -> np.ndarray:
    """Generate coordinates compatible with FFT conventions.

    Creates coordinates where index 0 corresponds to position 0,
    and coordinates wrap around at the Nyquist frequency. With the default
    spacing this is the signed bin index of each FFT output sample.

    Args:
        n: Number of samples.
        spacing: Sample spacing.

    Returns:
        1D array of coordinates: [0, d, 2d, ..., -2d, -d] for even n,
        or [0, d, 2d, ..., -(n//2)*d, ..., -d] for odd n.

    Example:
        ```python
        k = fft_coords(8)
        # Returns: [ 0.,  1.,  2.,  3., -4., -3., -2., -1.]
        ```
    """
    return fftfreq(n) * n * spacing


def rfft_coords(n: int, spacing: float = 1.0) -> np.ndarray:
    """Coordinates of the real-FFT (half-spectrum) axis: [0, d, ..., (n//2)*d]."""
    return rfftfreq(n) * n * spacing
