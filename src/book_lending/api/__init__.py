"""HTTP surface of the book lending service."""

from .app import create_app

__all__ = ["create_app"]
