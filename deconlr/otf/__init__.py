"""OTF synthesis and resampling."""

from .synthesis import (
    psf_to_otf_template,
    frequency_scale,
    interpolate_otf,
    synthesize_otf,
)

__all__ = [
    "psf_to_otf_template",
    "frequency_scale",
    "interpolate_otf",
    "synthesize_otf",
]
