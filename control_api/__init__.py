"""LAN stream control API (FastAPI)."""

__version__ = "1.0.0"
