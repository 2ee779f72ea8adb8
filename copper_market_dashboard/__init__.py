"""Economy indicator and copper inventory pipeline for the copper market dashboard."""

__version__ = "0.1.0"
