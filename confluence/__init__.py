"""Confluence: microstructure signal engine and per-user auto-trade scheduler."""

__version__ = "0.1.0"
