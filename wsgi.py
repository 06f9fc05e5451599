"""
WSGI / Flask-Migrate entry point.

Usage:
    flask --app wsgi db upgrade
    flask --app wsgi backfill-flexible-statuses --dry-run
    gunicorn wsgi:app
"""

from docflow import create_app

app = create_app()
