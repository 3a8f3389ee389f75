"""
Lean Future-State Studio
Database models package.

Exposes the shared Flask-SQLAlchemy handle. Model modules register their
tables on import; ``create_app`` imports every module before
``db.create_all()`` so Flask-Migrate sees the full metadata.

Usage:
    from leanflow.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
