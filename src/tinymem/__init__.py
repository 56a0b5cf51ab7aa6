"""tinymem: coordination layer for concurrent agent sessions."""

__version__ = "0.1.0"

__all__ = ["__version__"]
