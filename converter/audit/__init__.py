# FILE: converter/audit/__init__.py
"""Conversion audit trail (SQLAlchemy) and localhost-only history endpoints."""
