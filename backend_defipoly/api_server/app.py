"""
FastAPI/ASGI application entrypoint.

Run with: uvicorn backend_defipoly.api_server.app:app --host 0.0.0.0 --port 3001
Settings are read from the environment when the lifespan starts.
"""

from backend_defipoly.api_server.server import create_app

app = create_app()

__all__ = ["app"]
