"""
WSGI / Flask CLI entry point.

Usage:
    flask --app wsgi seed-roles
    flask --app wsgi db upgrade
    gunicorn wsgi:app
"""

from actionlog import create_app

app = create_app()
