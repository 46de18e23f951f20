"""
Protocol Desk
Shared SQLAlchemy handle and model exports.

Usage:
    from protocol_desk.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
