"""
WSGI entry point for the DMAIC workflow service.

Usage:
    flask --app wsgi db upgrade             # apply migrations/versions
    flask --app wsgi dmaic-recompute        # refresh metrics of open projects
    flask --app wsgi run
"""

from app import create_app

app = create_app()
