"""Screen Answerer: a relay between a browser quiz helper and the Gemini API."""

__version__ = "1.0.0"
