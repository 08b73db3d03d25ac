"""
WSGI / Flask-Migrate entry point.

Usage:
    flask --app wsgi db upgrade
    flask --app wsgi seed-sla-defaults
    gunicorn wsgi:app
"""

from certtrack import create_app

app = create_app()
