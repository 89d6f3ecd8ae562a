"""Re-export all ORM models so Base.metadata has all tables."""

from quote_reconciler.db.models.audit import AuditLog
from quote_reconciler.db.models.checkpoint import WatchCheckpoint
from quote_reconciler.db.models.quotation import Quotation

__all__ = [
    "Quotation",
    "AuditLog",
    "WatchCheckpoint",
]
