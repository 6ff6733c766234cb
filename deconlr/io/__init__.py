"""Volume container I/O."""

from .stack import ImageStack

__all__ = ["ImageStack"]
