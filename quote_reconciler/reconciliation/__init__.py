"""Reply reconciliation: match, extract, merge."""

from quote_reconciler.reconciliation.engine import ReconciliationEngine, select_candidate

__all__ = ["ReconciliationEngine", "select_candidate"]
