"""FastAPI application entrypoint.

Usage:
    uvicorn audisell.app:app --reload   (from backend/)
"""
from audisell.main import create_app

app = create_app()

__all__ = ["app"]
