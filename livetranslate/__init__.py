"""LiveTranslate - real-time speech translation client."""

__version__ = "0.1.0"
