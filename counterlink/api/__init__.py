"""
Local control API for a running counter.
"""

from .server import create_app

__all__ = ["create_app"]
