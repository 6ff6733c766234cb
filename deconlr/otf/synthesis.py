"""OTF synthesis: PSF -> template spectrum -> target half-spectrum.

The conditioned PSF is transformed at its own resolution, giving a template
half-spectrum of shape (pz, py, px // 2 + 1). The deconvolution runs on the
target volume grid, whose real FFT has shape (nz, ny, nx // 2 + 1), so the
template is resampled onto that grid.

Target bin k along an axis with n voxels of size d sits at spatial frequency
f = k / (n * d). The template bin carrying the same frequency is

    j = k * (p * dp) / (n * d) = k / scale,    scale = (n * d) / (p * dp)

where p and dp are the PSF voxel count and voxel size. The template is
sampled at j with trilinear interpolation of the real and imaginary parts
(``grid_sample``, the torch analogue of a bound texture fetch).

The template supports |j| <= p / 2 on the full (z, y) axes and
0 <= j <= px // 2 on the half (x) axis. The full axes are padded with one
periodic bin at each end so the whole support interpolates. Outside the
support the OTF is zero ("zero") or the nearest supported value
("nearest").

Example:
    >>> from deconlr.otf import synthesize_otf
    >>> otf = synthesize_otf(conditioned_psf, geometry, device="cuda")
    >>> otf.shape == geometry.complex_shape
    True
"""

import logging
from typing import Optional, Tuple, Union

import numpy as np
import torch
import torch.nn.functional as F

from ..core.geometry import VolumeGeometry
from ..errors import ConfigurationError, DegeneratePSFError, DeviceError
from ..utils.fourier import fft_coords, rfft_coords
from ..utils.transfer import to_device

__all__ = [
    "psf_to_otf_template",
    "frequency_scale",
    "interpolate_otf",
    "synthesize_otf",
]

logger = logging.getLogger(__name__)

# Upper bound on sampling-grid voxels built at once (grid is 3 floats each).
_CHUNK_VOXELS = 1 << 22

FILL_MODES = ("zero", "nearest")


def psf_to_otf_template(
    psf: Union[np.ndarray, torch.Tensor],
    device: Union[str, torch.device] = "cpu",
) -> torch.Tensor:
    """Forward real FFT of a centred PSF at its own resolution.

    The PSF centre voxel (p // 2 per axis) is moved to the origin and the
    PSF is normalized to unit sum, so the template has DC = 1 and no linear
    phase.

    Args:
        psf: Conditioned 3D PSF (z, y, x), centred at (pz//2, py//2, px//2).
        device: Device for the template.

    Returns:
        complex64 tensor of shape (pz, py, px // 2 + 1).
    """
    device = torch.device(device)
    if isinstance(psf, torch.Tensor):
        psf_t = psf.to(device=device, dtype=torch.float32)
    else:
        psf_t = to_device(psf, device)
    if psf_t.ndim != 3:
        raise ConfigurationError(f"PSF must be 3D, got shape {tuple(psf_t.shape)}")

    try:
        total = float(psf_t.sum())
        if not np.isfinite(total) or total <= 0.0:
            raise DegeneratePSFError(f"PSF total intensity is {total}, cannot normalize OTF")
        psf_t = psf_t / total
        psf_t = torch.fft.ifftshift(psf_t, dim=(0, 1, 2))
        template = torch.fft.rfftn(psf_t, dim=(0, 1, 2))
    except DegeneratePSFError:
        raise
    except RuntimeError as exc:
        raise DeviceError("otf_template_fft", str(exc)) from exc

    logger.debug("OTF template shape %s", tuple(template.shape))
    return template


def frequency_scale(
    psf_shape: Tuple[int, int, int], geometry: VolumeGeometry
) -> Tuple[float, float, float]:
    """Per-axis ratio of target to template frequency-bin density.

    scale = (n * d) / (p * dp), i.e. the ratio of the target field of view
    to the PSF field of view. A target bin k samples template bin k / scale.
    The voxel-size term enters as d / dp, not dp / d: target bin k sits at
    frequency k / (n * d), which is template bin k * (p * dp) / (n * d).
    """
    return tuple(
        (n * d) / (p * dp)
        for n, d, p, dp in zip(
            geometry.shape, geometry.voxel_size, psf_shape, geometry.psf_voxel_size
        )
    )


def _axis_samples(
    k: np.ndarray, scale: float, p: int, full: bool, fill: str
) -> Tuple[np.ndarray, np.ndarray]:
    """Sampling coordinates and support mask for one axis.

    Returns:
        (grid, mask): grid_sample coordinates (align_corners=True) into the
        padded template axis, and 1.0 where the bin lies inside the support
        (always 1.0 for "nearest").
    """
    j = k / scale
    if full:
        limit, offset, size = p / 2.0, p // 2 + 1, p + 2
        low = -limit
    else:
        limit, offset, size = float(p // 2), 0, p // 2 + 1
        low = 0.0

    inside = (j >= low - 1e-9) & (j <= limit + 1e-9)
    coords = np.clip(j, low, limit) + offset
    if size == 1:
        grid = np.zeros_like(coords)
    else:
        grid = 2.0 * coords / (size - 1) - 1.0

    if fill == "nearest":
        mask = np.ones_like(coords)
    else:
        mask = inside.astype(np.float64)
    return grid.astype(np.float32), mask.astype(np.float32)


def _pad_periodic(spectrum: torch.Tensor, dim: int) -> torch.Tensor:
    """Extend an fftshifted axis by one periodic bin at each end."""
    n = spectrum.shape[dim]
    head = spectrum.narrow(dim, n - 1, 1)
    tail = spectrum.narrow(dim, 0, 1)
    return torch.cat((head, spectrum, tail), dim=dim)


def interpolate_otf(
    template: torch.Tensor,
    psf_shape: Tuple[int, int, int],
    geometry: VolumeGeometry,
    fill: str = "zero",
    out: Optional[torch.Tensor] = None,
) -> torch.Tensor:
    """Resample a template half-spectrum onto the target volume's grid.

    Args:
        template: complex tensor (pz, py, px // 2 + 1) from
            :func:`psf_to_otf_template`.
        psf_shape: Real-space PSF shape (pz, py, px).
        geometry: Target volume geometry.
        fill: "zero" fills frequencies outside the template support with 0,
            "nearest" extends the template border.
        out: Optional preallocated complex64 tensor of
            ``geometry.complex_shape`` on the template's device.

    Returns:
        complex64 tensor of shape ``geometry.complex_shape``.
    """
    if fill not in FILL_MODES:
        raise ConfigurationError(f"Unknown OTF fill mode: {fill}. Use 'zero' or 'nearest'.")

    pz, py, px = psf_shape
    expected = (pz, py, px // 2 + 1)
    if tuple(template.shape) != expected:
        raise ConfigurationError(
            f"Template shape {tuple(template.shape)} does not match PSF shape "
            f"{psf_shape} (expected {expected})"
        )

    device = template.device
    target_shape = geometry.complex_shape
    if out is None:
        out = torch.empty(target_shape, dtype=torch.complex64, device=device)
    elif tuple(out.shape) != target_shape:
        raise ConfigurationError(
            f"OTF buffer shape {tuple(out.shape)} does not match {target_shape}"
        )

    sz, sy, sx = frequency_scale(psf_shape, geometry)
    logger.debug("OTF frequency scale (z, y, x) = (%.4g, %.4g, %.4g)", sz, sy, sx)

    axes = [
        _axis_samples(fft_coords(geometry.nz), sz, pz, True, fill),
        _axis_samples(fft_coords(geometry.ny), sy, py, True, fill),
        _axis_samples(rfft_coords(geometry.nx), sx, px, False, fill),
    ]
    (gz, mz), (gy, my), (gx, mx) = [
        (torch.from_numpy(g).to(device), torch.from_numpy(m).to(device)) for g, m in axes
    ]

    try:
        padded = torch.fft.fftshift(template, dim=(0, 1))
        padded = _pad_periodic(_pad_periodic(padded, 0), 1)
        channels = torch.stack((padded.real, padded.imag)).unsqueeze(0).float()

        plane = geometry.ny * (geometry.nx // 2 + 1)
        step = max(1, _CHUNK_VOXELS // plane)
        mask_yx = my[:, None] * mx[None, :]
        for z0 in range(0, geometry.nz, step):
            z1 = min(z0 + step, geometry.nz)
            zz, yy, xx = torch.meshgrid(gz[z0:z1], gy, gx, indexing="ij")
            # grid_sample takes (x, y, z) ordered coordinates.
            grid = torch.stack((xx, yy, zz), dim=-1).unsqueeze(0)
            sampled = F.grid_sample(
                channels,
                grid,
                mode="bilinear",
                padding_mode="border",
                align_corners=True,
            )[0]
            sampled = sampled * (mz[z0:z1, None, None] * mask_yx)
            out[z0:z1] = torch.complex(sampled[0], sampled[1])
    except RuntimeError as exc:
        raise DeviceError("otf_interpolation", str(exc)) from exc

    return out


def synthesize_otf(
    psf: Union[np.ndarray, torch.Tensor],
    geometry: Optional[VolumeGeometry],
    device: Union[str, torch.device] = "cpu",
    fill: str = "zero",
    out: Optional[torch.Tensor] = None,
) -> torch.Tensor:
    """Build the device-resident OTF for a target volume from a conditioned PSF.

    Args:
        psf: Conditioned 3D PSF (see :func:`deconlr.psf.condition_psf`).
        geometry: Finalized target geometry.
        device: Device for the OTF.
        fill: Out-of-support policy, "zero" or "nearest".
        out: Optional preallocated OTF buffer.

    Returns:
        complex64 tensor of shape ``geometry.complex_shape``.

    Raises:
        ConfigurationError: If the geometry is missing or not finalized.
    """
    if not isinstance(geometry, VolumeGeometry):
        raise ConfigurationError(
            "OTF synthesis requires a finalized VolumeGeometry, got "
            f"{type(geometry).__name__}"
        )

    psf_shape = tuple(psf.shape)
    template = psf_to_otf_template(psf, device)
    otf = interpolate_otf(template, psf_shape, geometry, fill=fill, out=out)
    del template

    logger.info(
        "OTF synthesized: PSF %s -> half-spectrum %s on %s",
        psf_shape,
        tuple(otf.shape),
        otf.device,
    )
    return otf
