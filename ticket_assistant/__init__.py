"""Action-resolution assistant for support tickets."""

from .__version__ import __version__

__all__ = ["__version__"]
