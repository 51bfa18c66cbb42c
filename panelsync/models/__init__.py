"""
Panelsync
Model package — shared Flask-SQLAlchemy handle.

Usage:
    from panelsync.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
