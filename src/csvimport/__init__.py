"""CSV bulk import service."""

__version__ = "0.1.0"
