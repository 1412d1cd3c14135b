"""
Tenant Identity Reconciliation Engine — database models package.

Every model module imports ``db`` from here so a single Flask-SQLAlchemy
instance is bound by the application factory.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
