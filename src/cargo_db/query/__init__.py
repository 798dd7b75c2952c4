"""Read and write paths over compiled structures."""

from cargo_db.query.executor import fetch_by_structure, fetch_one_by_structure, fetch_related
from cargo_db.query.filters import QueryReport, build_filter, build_sort
from cargo_db.query.insert import InsertPlan, TablePlan, execute_insert_plan, extract_insert_plan, insert
from cargo_db.query.remove import remove_with_filter

__all__ = [
    "InsertPlan",
    "QueryReport",
    "TablePlan",
    "build_filter",
    "build_sort",
    "execute_insert_plan",
    "extract_insert_plan",
    "fetch_by_structure",
    "fetch_one_by_structure",
    "fetch_related",
    "insert",
    "remove_with_filter",
]
