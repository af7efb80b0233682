"""
wsgi.py — WSGI entry point.

    gunicorn "shelfwise.wsgi:app"
    flask --app shelfwise.wsgi run

The config is picked from $FLASK_ENV (development, testing, production).
"""

from shelfwise.app import create_app

app = create_app()
