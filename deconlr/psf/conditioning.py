"""PSF conditioning: background removal, centroid estimation, recentring.

A measured PSF is rarely centred on the volume and carries a camera offset.
Before it can be turned into an OTF it is conditioned in three steps, in
this order:

1. subtract a uniform background and clamp at zero,
2. compute the intensity-weighted centroid,
3. shift the volume (trilinear, non-cyclic) so that the centroid lands on
   the geometric centre (pz // 2, py // 2, px // 2).

The centroid depends on the background having been removed, so
:func:`condition_psf` is the entry point that enforces the order.
"""

import logging
from typing import Optional, Tuple

import numpy as np
from scipy import ndimage

from ..errors import ConfigurationError, DegeneratePSFError

__all__ = [
    "estimate_background",
    "remove_background",
    "find_centroid",
    "geometric_center",
    "align_center",
    "condition_psf",
]

logger = logging.getLogger(__name__)


def _as_volume(psf: np.ndarray) -> np.ndarray:
    psf = np.asarray(psf)
    if psf.ndim != 3:
        raise ConfigurationError(f"PSF must be a 3D (z, y, x) volume, got ndim={psf.ndim}")
    if psf.size == 0:
        raise ConfigurationError("PSF volume is empty")
    return psf


def estimate_background(psf: np.ndarray) -> float:
    """Estimate a uniform background as the mean of the outer faces.

    The PSF energy is expected near the middle of the volume, so the six
    faces sample the camera offset and dark noise.
    """
    psf = _as_volume(psf)
    faces = [
        psf[0], psf[-1],
        psf[:, 0], psf[:, -1],
        psf[:, :, 0], psf[:, :, -1],
    ]
    total = sum(float(f.sum(dtype=np.float64)) for f in faces)
    count = sum(f.size for f in faces)
    return total / count


def remove_background(psf: np.ndarray, background: Optional[float] = None) -> np.ndarray:
    """Subtract a uniform background and clamp at zero.

    Args:
        psf: 3D PSF volume (z, y, x), any integer or float dtype.
        background: Background level. If None, uses
            :func:`estimate_background`.

    Returns:
        float32 volume of the same shape, non-negative.
    """
    psf = _as_volume(psf)
    if background is None:
        background = estimate_background(psf)
    logger.debug("PSF background level: %.6g", background)

    out = psf.astype(np.float32)
    out -= np.float32(background)
    np.maximum(out, 0.0, out=out)
    return out


def find_centroid(psf: np.ndarray) -> Tuple[float, float, float]:
    """Compute the intensity-weighted centroid (cz, cy, cx).

    Raises:
        DegeneratePSFError: If the total intensity is not positive.

    Example:
        >>> psf = np.zeros((8, 8, 8))
        >>> psf[2, 3, 5] = 1.0
        >>> find_centroid(psf)
        (2.0, 3.0, 5.0)
    """
    psf = _as_volume(psf)
    total = float(psf.sum(dtype=np.float64))
    if not np.isfinite(total) or total <= 0.0:
        raise DegeneratePSFError(
            f"PSF total intensity is {total}, centroid is undefined"
        )

    centroid = []
    for axis in range(3):
        other = tuple(a for a in range(3) if a != axis)
        profile = psf.sum(axis=other, dtype=np.float64)
        coords = np.arange(psf.shape[axis], dtype=np.float64)
        centroid.append(float((profile * coords).sum() / total))
    return tuple(centroid)


def geometric_center(shape: Tuple[int, ...]) -> Tuple[int, ...]:
    """Voxel index that the FFT treats as the centre, n // 2 per axis."""
    return tuple(n // 2 for n in shape)


def align_center(
    psf: np.ndarray, centroid: Optional[Tuple[float, float, float]] = None
) -> np.ndarray:
    """Shift the PSF so its centroid sits at the geometric centre.

    Uses trilinear resampling; regions uncovered by the shift are zero
    filled. The content is not wrapped around.

    Args:
        psf: Background-subtracted 3D PSF.
        centroid: Precomputed centroid. If None, computed here.

    Returns:
        Recentred float32 volume of the same shape.
    """
    psf = _as_volume(psf)
    if centroid is None:
        centroid = find_centroid(psf)

    shift = [c - p for c, p in zip(geometric_center(psf.shape), centroid)]
    logger.debug("PSF centroid %s, shift %s", centroid, shift)

    aligned = ndimage.shift(
        psf.astype(np.float32, copy=False),
        shift,
        order=1,
        mode="constant",
        cval=0.0,
    )
    return aligned.astype(np.float32, copy=False)


def condition_psf(psf: np.ndarray, background: Optional[float] = None) -> np.ndarray:
    """Background-subtract and recentre a raw PSF.

    Args:
        psf: Raw 3D PSF (z, y, x), non-negative intensities.
        background: Explicit background level, or None to estimate it.

    Returns:
        Conditioned float32 PSF of identical shape.

    Raises:
        DegeneratePSFError: If nothing remains after background removal.
    """
    cleaned = remove_background(psf, background)
    centroid = find_centroid(cleaned)
    aligned = align_center(cleaned, centroid)
    logger.info(
        "PSF conditioned: shape %s, centroid (%.3f, %.3f, %.3f)",
        aligned.shape,
        *centroid,
    )
    return aligned
