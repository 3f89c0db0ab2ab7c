# Overview: WSGI entry point (FLASK_APP=wsgi.py for the CLI, or any WSGI server).

from fulfillment import create_app

app = create_app()
