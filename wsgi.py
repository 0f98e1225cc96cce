"""
Flask CLI / Flask-Migrate entry point.

Usage:
    flask --app wsgi db upgrade
    flask --app wsgi db migrate -m "description"
    flask --app wsgi seed-default-fields --tenant <tenant_id>
"""

from scrapops import create_app

app = create_app()
