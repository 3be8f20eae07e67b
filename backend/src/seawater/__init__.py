"""Seawater hazard data-source orchestration layer."""

__version__ = "0.1.0"
