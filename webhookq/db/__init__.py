"""
PostgreSQL support for the postgres queue transport
"""

from .schema import ensure_schema, setup_database

__all__ = ["ensure_schema", "setup_database"]
