"""Synthetic volumes for algorithm development and tests.

Example:
    >>> from deconlr.toy import create_3d_spheres, gaussian_psf, blur, add_poisson_noise
    >>> truth = create_3d_spheres((64, 64, 64))
    >>> observed = add_poisson_noise(blur(truth, gaussian_psf(truth.shape, 2.0)))
"""

from .volumes import (
    impulse,
    gaussian_psf,
    create_3d_sphere,
    create_3d_spheres,
    blur,
    add_poisson_noise,
)

__all__ = [
    "impulse",
    "gaussian_psf",
    "create_3d_sphere",
    "create_3d_spheres",
    "blur",
    "add_poisson_noise",
]
