"""Version information for doclock."""

__version__ = "0.3.0"
