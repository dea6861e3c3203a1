"""Interfaces (Protocols) for application layer dependencies.

The use cases depend on these structural types rather than on the httpx
client, so tests can pass a plain stub object.

Key Interfaces:
    - InferenceClientInterface: One-shot multimodal text generation
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from screen_answerer.domain.entities import UpstreamPrompt


class InferenceClientInterface(Protocol):
    """Protocol for the upstream inference client.

    Implementations send one prompt (optionally with an inline image) and
    return the model's reply text. Failures must be raised as
    ``UpstreamError`` subclasses so the retry executor can tell transient
    overload from terminal errors.
    """

    async def generate_content(
        self,
        prompt: UpstreamPrompt,
        *,
        api_key: str,
        model: str | None = None,
    ) -> str:
        """Return the model's reply to ``prompt``.

        Args:
            prompt: Instruction text plus optional inline image.
            api_key: Credential forwarded to the upstream API.
            model: Model identifier. None uses the client's default.

        Raises:
            UpstreamAuthRejectedError: Credential rejected.
            UpstreamTransientError: Temporary overload (retryable).
            UpstreamError: Any other upstream failure.
        """
        ...


__all__ = ["InferenceClientInterface"]
