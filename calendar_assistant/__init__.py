"""Calendar assistant: availability engine and HTTP API over one Google calendar."""

__version__ = "0.1.0"
