"""Synthetic 3D volumes and PSFs for tests and demos.

Example:
    >>> from deconlr.toy import create_3d_spheres, gaussian_psf, blur
    >>> truth = create_3d_spheres((64, 64, 64))
    >>> psf = gaussian_psf((64, 64, 64), sigma=(2.0, 1.5, 1.5))
    >>> observed = blur(truth, psf)
"""

from typing import Optional, Sequence, Tuple, Union

import numpy as np

__all__ = [
    "impulse",
    "gaussian_psf",
    "create_3d_sphere",
    "create_3d_spheres",
    "blur",
    "add_poisson_noise",
]


def impulse(
    shape: Tuple[int, int, int], position: Optional[Sequence[int]] = None
) -> np.ndarray:
    """Unit impulse, at the FFT centre (n // 2 per axis) by default."""
    volume = np.zeros(shape, dtype=np.float32)
    if position is None:
        position = tuple(n // 2 for n in shape)
    volume[tuple(position)] = 1.0
    return volume


def gaussian_psf(
    shape: Tuple[int, int, int],
    sigma: Union[float, Sequence[float]] = 2.0,
    center: Optional[Sequence[float]] = None,
) -> np.ndarray:
    """Unit-sum anisotropic Gaussian PSF.

    Args:
        shape: Volume shape (z, y, x).
        sigma: Standard deviation in voxels, scalar or (sz, sy, sx).
        center: Subvoxel centre. Defaults to (nz//2, ny//2, nx//2).

    Returns:
        float32 PSF summing to 1.
    """
    if np.isscalar(sigma):
        sigma = (float(sigma),) * 3
    if center is None:
        center = tuple(n // 2 for n in shape)

    axes = []
    for n, s, c in zip(shape, sigma, center):
        x = np.arange(n) - c
        axes.append(np.exp(-(x**2) / (2.0 * s**2)))
    psf = axes[0][:, None, None] * axes[1][None, :, None] * axes[2][None, None, :]
    return (psf / psf.sum()).astype(np.float32)


def create_3d_sphere(shape=(50, 50, 50), center=None, radius=15):
    """
    Creates a smooth 3D field representing a sphere.
    """
    d, h, w = shape
    if center is None:
        center = (d // 2, h // 2, w // 2)

    zz, yy, xx = np.meshgrid(np.arange(d), np.arange(h), np.arange(w), indexing="ij")

    dist = np.sqrt(
        (xx - center[2]) ** 2 + (yy - center[1]) ** 2 + (zz - center[0]) ** 2
    )

    # Soft sphere
    return 1.0 / (1.0 + np.exp(dist - radius))


def create_3d_spheres(shape=(64, 64, 64), background=0.05):
    """Several soft spheres of different brightness on a flat background."""
    d, h, w = shape
    field = np.full(shape, background, dtype=np.float64)
    specs = [
        ((d // 2, h // 2, w // 2), min(shape) / 8, 1.0),
        ((d // 3, h // 4, w // 4), min(shape) / 16, 2.0),
        ((2 * d // 3, 3 * h // 4, 2 * w // 3), min(shape) / 12, 0.5),
        ((d // 4, 3 * h // 4, w // 3), 1.5, 4.0),
    ]
    for center, radius, amplitude in specs:
        field += amplitude * create_3d_sphere(shape, center=center, radius=radius)
    return field.astype(np.float32)


def blur(volume: np.ndarray, psf: np.ndarray) -> np.ndarray:
    """Circular convolution with a centred PSF of the same shape."""
    if volume.shape != psf.shape:
        raise ValueError(f"PSF shape {psf.shape} must match volume shape {volume.shape}")
    otf = np.fft.rfftn(np.fft.ifftshift(psf))
    blurred = np.fft.irfftn(np.fft.rfftn(volume) * otf, s=volume.shape, axes=(0, 1, 2))
    return np.maximum(blurred, 0.0).astype(np.float32)


def add_poisson_noise(
    exact: np.ndarray,
    peak_photons: float = 1000.0,
    rng: np.random.Generator = None,
) -> np.ndarray:
    """Add Poisson noise to exact data.

    Scales data so peak equals peak_photons, applies Poisson sampling,
    then scales back to original units.
    """
    if rng is None:
        rng = np.random.default_rng()

    nonneg = np.maximum(exact, 0.0)
    peak_val = np.max(nonneg)
    if peak_val <= 0:
        return exact.astype(np.float32)

    scale = peak_photons / peak_val
    noisy = rng.poisson(nonneg * scale).astype(np.float32)
    return noisy / np.float32(scale)
