"""Declarative authorization rules compiled into PostgreSQL objects."""

__version__ = "0.1.0"
