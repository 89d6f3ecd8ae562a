"""Reconcile supplier email replies against open quotations."""

__version__ = "0.1.0"
