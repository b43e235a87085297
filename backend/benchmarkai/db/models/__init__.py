"""Re-export all models so Base.metadata sees them."""

from benchmarkai.db.models.report import Report

__all__ = [
    "Report",
]
