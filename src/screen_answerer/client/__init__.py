"""Outbound client for the Gemini inference API."""

from screen_answerer.client.gemini import AsyncGeminiClient, GeminiClientConfig

__all__ = ["AsyncGeminiClient", "GeminiClientConfig"]
