# Overview: WSGI entrypoint; builds the Flask app for gunicorn and the flask CLI.

# backend/wsgi.py
from gasbook import create_app

app = create_app()
