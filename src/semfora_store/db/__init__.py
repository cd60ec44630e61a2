"""SQLite plumbing for semfora-store.

This package holds the pieces the persistence layer is built from:

- ``values``: typed bind values and the binder
- ``query``: statements, queries and row views
- ``schema``: schema version, migration steps and the migrator
- ``connection``: database naming and the exclusive connection opener
- ``transaction``: the begin/commit/rollback bracket

Usage:
    from semfora_store.db import ConnectionOpener, TransactionRunner

    conn = ConnectionOpener(path).open()
    runner = TransactionRunner(conn, observer)

    with runner.transaction("Seed targets"):
        conn.execute("INSERT INTO targets ...")
"""

from .connection import ConnectionOpener, database_name
from .query import ABSENT, Query, RowView, Statement
from .schema import MIGRATIONS, SCHEMA_VERSION, MigrationStep, SchemaMigrator, get_schema_version
from .transaction import TransactionObserver, TransactionRunner
from .values import NULL, Blob, BoundValue, Float, Integer, Null, ParameterList, Text, bind, bound

__all__ = [
    "ABSENT",
    "Blob",
    "BoundValue",
    "ConnectionOpener",
    "Float",
    "Integer",
    "MIGRATIONS",
    "MigrationStep",
    "NULL",
    "Null",
    "ParameterList",
    "Query",
    "RowView",
    "SCHEMA_VERSION",
    "SchemaMigrator",
    "Statement",
    "Text",
    "TransactionObserver",
    "TransactionRunner",
    "bind",
    "bound",
    "database_name",
    "get_schema_version",
]
