"""
PracticeHub Core
SQLAlchemy extension instance shared by every model module.

Usage:
    from practicehub.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
