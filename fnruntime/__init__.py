"""HTTP runtime and process supervisor for event/context style functions."""

__version__ = "0.1.0"
