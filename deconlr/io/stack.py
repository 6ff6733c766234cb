"""Volumetric image stack container backed by TIFF files."""

import logging
from pathlib import Path
from typing import Tuple, Union

import numpy as np
import tifffile

from ..errors import ConfigurationError

__all__ = ["ImageStack"]

logger = logging.getLogger(__name__)


class ImageStack:
    """A 3D (z, y, x) sample volume.

    Example:
        >>> stack = ImageStack.load("cell.tif")
        >>> stack.nx, stack.ny, stack.nz
        (512, 512, 64)
        >>> stack.astype(np.float32).save("cell_f32.tif")
    """

    def __init__(self, data: np.ndarray):
        data = np.asarray(data)
        if data.ndim == 2:
            data = data[np.newaxis]
        if data.ndim != 3:
            raise ConfigurationError(f"ImageStack expects a 3D volume, got ndim={data.ndim}")
        self._data = np.ascontiguousarray(data)

    @classmethod
    def load(cls, path: Union[str, Path]) -> "ImageStack":
        path = Path(path)
        if not path.is_file():
            raise FileNotFoundError(path)
        data = tifffile.imread(path)
        logger.debug("Loaded %s: shape %s, dtype %s", path, data.shape, data.dtype)
        return cls(np.squeeze(data) if data.ndim > 3 else data)

    def save(self, path: Union[str, Path]) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        tifffile.imwrite(path, self._data, photometric="minisblack")
        logger.debug("Saved %s: shape %s, dtype %s", path, self.shape, self.dtype)
        return path

    def astype(self, dtype) -> "ImageStack":
        """Type-converting copy, e.g. uint16 samples -> float32.

        Conversion to an integer type rounds and clips to the type's range.
        """
        dtype = np.dtype(dtype)
        if np.issubdtype(dtype, np.integer) and not np.issubdtype(self.dtype, np.integer):
            info = np.iinfo(dtype)
            converted = np.clip(np.rint(self._data), info.min, info.max).astype(dtype)
        else:
            converted = self._data.astype(dtype)
        return ImageStack(converted)

    @property
    def data(self) -> np.ndarray:
        return self._data

    @property
    def shape(self) -> Tuple[int, int, int]:
        return self._data.shape

    @property
    def dtype(self) -> np.dtype:
        return self._data.dtype

    @property
    def nx(self) -> int:
        return self._data.shape[2]

    @property
    def ny(self) -> int:
        return self._data.shape[1]

    @property
    def nz(self) -> int:
        return self._data.shape[0]

    def __array__(self, dtype=None, copy=None):
        if dtype is None:
            return self._data
        return self._data.astype(dtype)

    def __repr__(self) -> str:
        return f"ImageStack(shape={self.shape}, dtype={self.dtype})"
