"""
WSGI / Flask-Migrate entry point.

Usage:
    gunicorn wsgi:app
    flask --app wsgi db upgrade
    flask --app wsgi seed-predefined-phases
    flask --app wsgi create-super-admin
"""

from phasetrack import create_app

app = create_app()
