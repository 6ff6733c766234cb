"""PSF conditioning.

Example:
    >>> from deconlr.psf import condition_psf
    >>> conditioned = condition_psf(raw_psf)
"""

from .conditioning import (
    estimate_background,
    remove_background,
    find_centroid,
    geometric_center,
    align_center,
    condition_psf,
)

__all__ = [
    "estimate_background",
    "remove_background",
    "find_centroid",
    "geometric_center",
    "align_center",
    "condition_psf",
]
