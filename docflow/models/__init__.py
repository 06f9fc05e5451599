"""
Document Workflow Circuit service — SQLAlchemy extension instance.

Every model module imports ``db`` from here:
    from docflow.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
