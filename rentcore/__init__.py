"""Rental contract lifecycle, billing and payment reconciliation engine."""

__version__ = "1.0.0"
