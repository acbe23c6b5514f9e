"""
Stageflow
SQLAlchemy models package.

Every model module imports the shared ``db`` handle from here:

    from stageflow.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
