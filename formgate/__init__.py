"""Formgate - schema-driven form submission pipeline."""

__version__ = "0.1.0"
