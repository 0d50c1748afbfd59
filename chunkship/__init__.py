"""Content-defined chunking and incremental package upload"""

__version__ = "1.0.0"
