"""Ekicho: visited-station tracking sync core."""

__version__ = "0.1.0"
