"""Celery tasks: carousel generation, notifications and scheduled maintenance."""
from .app import celery_app

__all__ = ["celery_app"]
