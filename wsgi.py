"""
WSGI / Flask-Migrate entry point.

Usage:
    flask --app wsgi db migrate -m "description"
    flask --app wsgi db upgrade
    gunicorn -k gthread --threads 8 wsgi:app   # SSE streams hold a thread each
"""

from stageflow import create_app

app = create_app()
