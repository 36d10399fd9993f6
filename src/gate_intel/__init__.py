"""Gate discovery and spatial intelligence engine."""

__version__ = "0.1.0"
