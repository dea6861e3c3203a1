"""HTTP layer of the Screen Answerer relay (FastAPI)."""
