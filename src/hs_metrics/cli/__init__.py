"""
Command-line interface for the HS metrics engine.
"""

from .main import cli

__all__ = ["cli"]
