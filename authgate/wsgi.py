"""
WSGI entry point.

    gunicorn --threads 8 "authgate.wsgi:app"
    flask --app authgate.wsgi run
"""

import os

from authgate.app import create_app

app = create_app(os.getenv("FLASK_ENV", "development"))
