"""Core reconciliation engine."""
