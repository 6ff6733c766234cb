"""Host/device transfer helpers."""

import logging
from contextlib import contextmanager
from typing import Iterator

import numpy as np
import torch

from ..errors import DeviceError

__all__ = ["host_registered", "to_device"]

logger = logging.getLogger(__name__)


@contextmanager
def host_registered(array: np.ndarray, device: torch.device) -> Iterator[np.ndarray]:
    """Page-lock a host array for the duration of a transfer.

    On CUDA devices the array memory is registered with ``cudaHostRegister``
    and unregistered on every exit path. On other devices this is a no-op.

    Args:
        array: C-contiguous host array.
        device: Target device of the transfer.

    Yields:
        The same array, registered while the block runs.

    Example:
        >>> with host_registered(volume, device) as staged:
        ...     tensor = torch.from_numpy(staged).to(device)
    """
    if device.type != "cuda":
        yield array
        return
    if not array.flags["C_CONTIGUOUS"]:
        raise DeviceError("host_register", "array must be C-contiguous")

    cudart = torch.cuda.cudart()
    ptr = array.ctypes.data
    rc = cudart.cudaHostRegister(ptr, array.nbytes, 0)
    if int(rc) != 0:
        raise DeviceError("host_register", f"cudaHostRegister returned {rc}")
    logger.debug("Pinned %d bytes of host memory", array.nbytes)
    try:
        yield array
    finally:
        rc = cudart.cudaHostUnregister(ptr)
        if int(rc) != 0:
            logger.warning("cudaHostUnregister returned %s", rc)


def to_device(
    array: np.ndarray, device: torch.device, dtype: torch.dtype = torch.float32
) -> torch.Tensor:
    """Copy a host array to the device through a pinned staging region."""
    staged = np.ascontiguousarray(array, dtype=np.float32)
    try:
        with host_registered(staged, device):
            tensor = torch.from_numpy(staged).to(device=device, dtype=dtype)
            if device.type == "cuda":
                torch.cuda.synchronize(device)
    except DeviceError:
        raise
    except RuntimeError as exc:
        raise DeviceError("host_to_device", str(exc)) from exc
    return tensor
