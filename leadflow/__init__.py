"""Lead capture, contact parsing and pipeline status tracking for direct sales."""

__version__ = "1.0.0"
