# =============================================================================
# Django Project Configuration Package
# =============================================================================
# Settings, URLs, WSGI application and the Celery app.
#
# The Celery app is imported here so tasks are registered when Django starts.
# =============================================================================

from config.celery import app as celery_app

__all__ = ("celery_app",)
