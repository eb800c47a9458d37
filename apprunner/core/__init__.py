"""Reconciliation and supervision engine."""
