"""Goldberg Config Manager: per-game configuration for the Goldberg Steam emulator."""

__version__ = "0.1.0"
