"""NoteFinder - local hybrid search for voice notes."""

__version__ = "0.1.0"
