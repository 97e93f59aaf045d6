"""
Database module for AccessMap
SQLAlchemy persistence for reports and the points ledger
"""

from .connection import DatabaseConnection, init_db
from .models import (
    Base,
    Report,
    ReportStatus,
    Photo,
    PhotoFlag,
    Confirmation,
    RemovalReport,
    SubmitCell,
    User,
    utcnow,
)

__all__ = [
    "DatabaseConnection",
    "init_db",
    "Base",
    "Report",
    "ReportStatus",
    "Photo",
    "PhotoFlag",
    "Confirmation",
    "RemovalReport",
    "SubmitCell",
    "User",
    "utcnow",
]
