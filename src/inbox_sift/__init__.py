"""inbox-sift package initialization."""

__all__ = ["__version__"]

__version__ = "0.1.0"
