"""Django project package for the release orchestrator."""

from config.celery import app as celery_app

__all__ = ("celery_app",)
