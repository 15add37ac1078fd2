"""Command line interface (``connector-sdk``)."""

from .main import app

__all__ = ["app"]
