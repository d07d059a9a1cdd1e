"""Parley: direct messaging between connected users."""

__version__ = "0.1.0"
