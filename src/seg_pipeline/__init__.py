"""Double-buffered data preparation for image / pixel-label datasets."""

__version__ = "0.0.1"
