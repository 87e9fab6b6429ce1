"""Job queue and lifecycle engine for an unattended video processing pipeline."""

__version__ = "0.1.0"
