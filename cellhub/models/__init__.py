"""
CellHub
SQLAlchemy database instance shared by every model module.

Usage:
    from cellhub.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
