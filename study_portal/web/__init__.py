"""HTTP surface for the study portal."""

from .server import create_app

__all__ = ["create_app"]
