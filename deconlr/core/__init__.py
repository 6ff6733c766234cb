"""Core data structures."""

from .geometry import MAX_VOLUME_SIZE, GeometryBuilder, VolumeGeometry

__all__ = [
    "MAX_VOLUME_SIZE",
    "GeometryBuilder",
    "VolumeGeometry",
]
