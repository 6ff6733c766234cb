"""Volume geometry: dimensions and the two voxel-size triples."""

from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from ..errors import ConfigurationError, VolumeSizeExceededError

__all__ = ["MAX_VOLUME_SIZE", "VolumeGeometry", "GeometryBuilder"]

MAX_VOLUME_SIZE = 2048

Triple = Tuple[float, float, float]


def _check_dims(nx: int, ny: int, nz: int) -> None:
    for name, n in (("nx", nx), ("ny", ny), ("nz", nz)):
        if int(n) != n or n < 1:
            raise ConfigurationError(f"{name} must be a positive integer, got {n}")
        if n > MAX_VOLUME_SIZE:
            raise VolumeSizeExceededError(
                f"volume size exceeds maximum constraints: {name}={n} > {MAX_VOLUME_SIZE}"
            )


def _check_spacing(name: str, spacing: Sequence[float]) -> Triple:
    spacing = tuple(float(s) for s in spacing)
    if len(spacing) != 3:
        raise ConfigurationError(
            f"{name} needs 3 values (dz, dy, dx), got {len(spacing)}"
        )
    if any(s <= 0 for s in spacing):
        raise ConfigurationError(f"{name} values must be positive, got {spacing}")
    return spacing


@dataclass(frozen=True)
class VolumeGeometry:
    """Immutable geometry of one deconvolution run.

    Arrays are C-ordered as (z, y, x); the real FFT halves the x axis, so the
    half-spectrum shape is (nz, ny, nx // 2 + 1).

    Attributes:
        shape: Volume shape (nz, ny, nx).
        voxel_size: Raw-data voxel size (dz, dy, dx), in microns.
        psf_voxel_size: PSF voxel size (dpz, dpy, dpx), in microns.

    Example:
        >>> geom = VolumeGeometry(
        ...     shape=(64, 256, 256),
        ...     voxel_size=(0.2, 0.1, 0.1),
        ...     psf_voxel_size=(0.1, 0.05, 0.05),
        ... )
        >>> geom.complex_shape
        (64, 256, 129)
    """

    shape: Tuple[int, int, int]
    voxel_size: Triple
    psf_voxel_size: Triple

    def __post_init__(self) -> None:
        """Validate dimensions and voxel sizes."""
        if len(self.shape) != 3:
            raise ConfigurationError(f"shape must be (nz, ny, nx), got {self.shape}")
        nz, ny, nx = self.shape
        _check_dims(nx, ny, nz)
        object.__setattr__(self, "shape", (int(nz), int(ny), int(nx)))
        object.__setattr__(self, "voxel_size", _check_spacing("voxel_size", self.voxel_size))
        object.__setattr__(
            self, "psf_voxel_size", _check_spacing("psf_voxel_size", self.psf_voxel_size)
        )

    @property
    def nx(self) -> int:
        return self.shape[2]

    @property
    def ny(self) -> int:
        return self.shape[1]

    @property
    def nz(self) -> int:
        return self.shape[0]

    @property
    def voxel_ratio(self) -> Triple:
        """Raw voxel size over PSF voxel size, per axis (z, y, x)."""
        return tuple(d / dp for d, dp in zip(self.voxel_size, self.psf_voxel_size))

    @property
    def real_shape(self) -> Tuple[int, int, int]:
        return self.shape

    @property
    def complex_shape(self) -> Tuple[int, int, int]:
        """Shape of the forward real FFT output, (nz, ny, nx // 2 + 1)."""
        return (self.nz, self.ny, self.nx // 2 + 1)

    @property
    def real_size(self) -> int:
        return self.nx * self.ny * self.nz

    @property
    def complex_size(self) -> int:
        return (self.nx // 2 + 1) * self.ny * self.nz


class GeometryBuilder:
    """Collects geometry incrementally and finalizes it once.

    The volume-size ceiling is checked at :meth:`set_volume_size` so the
    error surfaces at the offending call.
    """

    def __init__(self):
        self._voxel_size: Optional[Triple] = None
        self._psf_voxel_size: Optional[Triple] = None
        self._shape: Optional[Tuple[int, int, int]] = None

    def set_resolution(
        self, voxel_size: Sequence[float], psf_voxel_size: Sequence[float]
    ) -> "GeometryBuilder":
        """Store raw and PSF voxel sizes, each given as (dz, dy, dx)."""
        self._voxel_size = _check_spacing("voxel_size", voxel_size)
        self._psf_voxel_size = _check_spacing("psf_voxel_size", psf_voxel_size)
        return self

    def set_volume_size(self, nx: int, ny: int, nz: int) -> "GeometryBuilder":
        _check_dims(nx, ny, nz)
        self._shape = (int(nz), int(ny), int(nx))
        return self

    @property
    def has_resolution(self) -> bool:
        return self._voxel_size is not None

    @property
    def has_volume_size(self) -> bool:
        return self._shape is not None

    @property
    def is_complete(self) -> bool:
        return self.has_resolution and self.has_volume_size

    def build(self) -> VolumeGeometry:
        if not self.is_complete:
            missing = []
            if not self.has_resolution:
                missing.append("resolution")
            if not self.has_volume_size:
                missing.append("volume size")
            raise ConfigurationError(
                f"Geometry is incomplete, missing: {', '.join(missing)}"
            )
        return VolumeGeometry(
            shape=self._shape,
            voxel_size=self._voxel_size,
            psf_voxel_size=self._psf_voxel_size,
        )
