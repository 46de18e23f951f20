"""
WSGI / Flask-Migrate entry point.

Usage:
    gunicorn wsgi:app
    flask --app wsgi db upgrade
    flask --app wsgi export-protocols --output protocols.xlsx
"""

from protocol_desk import create_app

app = create_app()
