"""API routes for the Screen Answerer relay."""

from screen_answerer.api.routes.questions import router as questions_router
from screen_answerer.api.routes.system import router as system_router

__all__ = ["questions_router", "system_router"]
