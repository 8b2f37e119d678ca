"""
WSGI entry point.

Usage:
    flask --app wsgi run
    flask --app wsgi db upgrade
    flask --app wsgi run-job dormancy_scan
"""

from practicehub import create_app

app = create_app()
