"""FastAPI application for the Screen Answerer relay.

Key behaviors:
    - Relays screenshots and typed quiz questions to the Gemini API
    - Guards every upstream call with a per-client cool-down and a global
      call quota
    - Retries transient upstream failures with jittered exponential backoff
    - Tracks uploaded scratch files by reference count and deletes them
      once no request stage needs them

Endpoints:
    - POST /process_question - Answer a typed question or screenshot
    - POST /monitor_screen - Detect and answer a quiz question in a screenshot
    - POST /process_question_with_key - Answer with a caller-supplied key and model
    - GET /health - Service status and counters

Routes are mounted at the root because the browser client posts to these
paths directly.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI

from screen_answerer.api.lifespan import lifespan_context
from screen_answerer.api.middleware import setup_exception_handlers, setup_middleware
from screen_answerer.api.routes import questions_router, system_router
from screen_answerer.core.config import settings

logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.api.title,
    description="Relay between a browser quiz helper and the Gemini API",
    version=settings.api.version,
    lifespan=lifespan_context,
)

setup_middleware(app)
setup_exception_handlers(app)

app.include_router(system_router)
app.include_router(questions_router)
