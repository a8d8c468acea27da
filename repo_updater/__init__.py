"""Repository update checker and version switcher."""

__version__ = "0.1.0"
