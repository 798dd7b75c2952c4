"""Physical table descriptions.

``cargo_db.table.constructor`` (migrations) is imported on its own.
"""

from cargo_db.table.builder import PRIMARY_KEY, Field, ForeignKey, Table, TableSet

__all__ = ["PRIMARY_KEY", "Field", "ForeignKey", "Table", "TableSet"]
