"""Parley: direct messaging backend with per-conversation encryption."""

__version__ = "0.1.0"
