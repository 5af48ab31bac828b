"""HTTP routers exposed by the assistant service."""

from . import messages

__all__ = ["messages"]
