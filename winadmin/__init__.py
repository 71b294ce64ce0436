"""Windows and Azure administration tasks."""

__version__ = "1.0.0"
