"""
Scrap Operations Platform: ORM models.

The shared Flask-SQLAlchemy handle lives here so every model module and
service can do ``from scrapops.models import db``.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
