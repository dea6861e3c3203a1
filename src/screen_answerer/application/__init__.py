"""Application layer for the Screen Answerer relay.

Use cases that compose the call governor, the temporary file registry and
the retry executor around the upstream inference client. Depends only on
the domain layer and on the protocols in ``interfaces``.
"""

from screen_answerer.application.interfaces import InferenceClientInterface
from screen_answerer.application.use_cases import (
    AnswerQuestionUseCase,
    MonitorScreenUseCase,
)

__all__ = [
    "AnswerQuestionUseCase",
    "InferenceClientInterface",
    "MonitorScreenUseCase",
]
