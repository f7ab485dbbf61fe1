"""
WSGI / Flask-Migrate entry point.

Usage:
    flask --app wsgi db upgrade
    flask --app wsgi seed-reference-types
    gunicorn wsgi:app
"""

from release_planner import create_app

app = create_app()
