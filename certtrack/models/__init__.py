"""
Certification Tracker
SQLAlchemy extension instance shared by every model module.

Usage:
    from certtrack.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
