"""Healthy Home Exchange listings service."""

__version__ = "1.0.0"
