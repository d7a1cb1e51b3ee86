"""Shared fixtures: an in-memory stand-in for the PostgreSQL catalog."""
import copy
import json
import re
from typing import Any, Dict, List, Optional, Tuple

import pytest
from fastapi.testclient import TestClient

from pg_table_admin.config import DatabaseSettings, Settings
from pg_table_admin.database.query_builder import (
    COLUMN_COUNT_SQL,
    COLUMN_EXISTS_SQL,
    LIST_TABLES_SQL,
    TABLE_COLUMNS_SQL,
    TABLE_EXISTS_SQL,
    TABLE_SCHEMA_SQL,
)
from pg_table_admin.database.table_service import TableService
from pg_table_admin.server import create_app, get_table_service
from pg_table_admin.utils.errors import ErrorKind, TableAdminError
from pg_table_admin.utils.validation import base_data_type

IDENT = r'"((?:[^"]|"")+)"'

CREATE_TABLE = re.compile(rf"^CREATE TABLE {IDENT} \(\n  (.*)\n\)$", re.DOTALL)
COLUMN_CLAUSE = re.compile(rf"^{IDENT} (.+?)( NOT NULL)?$")
PRIMARY_KEY_CLAUSE = re.compile(r"^PRIMARY KEY \((.*)\)$")
DROP_TABLE = re.compile(rf"^DROP TABLE {IDENT}( CASCADE)?$")
TRUNCATE_TABLE = re.compile(rf"^TRUNCATE TABLE {IDENT}$")
ADD_COLUMN = re.compile(rf"^ALTER TABLE {IDENT} ADD COLUMN {IDENT} (.+?)( NOT NULL)?( DEFAULT (.+))?$")
DROP_COLUMN = re.compile(rf"^ALTER TABLE {IDENT} DROP COLUMN {IDENT}( CASCADE)?$")
ROW_COUNT = re.compile(rf"^SELECT COUNT\(\*\) AS total FROM {IDENT}$")
PAGE_SELECT = re.compile(rf"^SELECT \* FROM {IDENT} ORDER BY 1 LIMIT :limit OFFSET :offset$")

CATALOG_TYPE_NAMES = {
    "SERIAL": "integer",
    "INTEGER": "integer",
    "VARCHAR": "character varying",
    "CHAR": "character",
    "TIMESTAMP": "timestamp without time zone",
    "DECIMAL": "numeric",
    "DOUBLE PRECISION": "double precision",
}


def _unquote(name: str) -> str:
    return name.replace('""', '"')


def _catalog_type(type_string: str) -> str:
    base = base_data_type(type_string).strip()
    return CATALOG_TYPE_NAMES.get(base, base.lower())


class FakeExecutor:
    """In-memory executor that understands the statements QueryBuilder emits.

    Every statement and transaction event is recorded. Failures can be
    injected for statements starting with a given prefix.
    """

    def __init__(self):
        self.tables: Dict[str, Dict[str, Any]] = {}
        self.statements: List[Tuple[str, Optional[Dict[str, Any]]]] = []
        self.events: List[str] = []
        self.failures: Dict[str, Tuple[str, str]] = {}
        self._snapshot: Optional[Dict[str, Dict[str, Any]]] = None

    # ---------- Test setup helpers ----------
    def add_table(self, name: str, columns: List[Tuple[str, str]], primary_keys=(), rows=None):
        self.tables[name] = {
            "columns": [
                {
                    "name": col_name,
                    "data_type": _catalog_type(col_type),
                    "nullable": col_name not in primary_keys,
                    "default": None,
                    "is_primary": col_name in primary_keys,
                }
                for col_name, col_type in columns
            ],
            "rows": list(rows or []),
        }

    def fail_on(self, prefix: str, code: str = "XX000", message: str = "simulated driver failure"):
        self.failures[prefix] = (code, message)

    def ddl_statements(self) -> List[str]:
        return [
            sql for sql, _ in self.statements
            if sql.startswith(("CREATE", "DROP", "ALTER", "TRUNCATE"))
        ]

    # ---------- SQLExecutor protocol ----------
    def begin(self) -> None:
        self.events.append("begin")
        self._snapshot = copy.deepcopy(self.tables)

    def commit(self) -> None:
        self.events.append("commit")
        self._snapshot = None

    def rollback(self) -> None:
        self.events.append("rollback")
        if self._snapshot is not None:
            self.tables = self._snapshot
            self._snapshot = None

    def quote_literal(self, value: Any) -> str:
        if value is None:
            return "NULL"
        if isinstance(value, dict):
            value = json.dumps(value)
        elif not isinstance(value, (str, int, float, bool)):
            raise TableAdminError(
                ErrorKind.VALIDATION, f"can't adapt type '{type(value).__name__}'"
            )
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, (int, float)):
            return str(value)
        return "'" + str(value).replace("'", "''") + "'"

    def execute(self, query: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        self.statements.append((query, dict(params) if params else None))
        for prefix, (code, message) in self.failures.items():
            if query.startswith(prefix):
                raise TableAdminError(ErrorKind.DATABASE, message, code=code, context={"sql": query})

        params = params or {}
        catalog = self._catalog_query(query, params)
        if catalog is not None:
            return catalog
        return self._statement(query, params)

    # ---------- Statement emulation ----------
    def _columns(self, table_name: str) -> List[Dict[str, Any]]:
        table = self.tables.get(table_name)
        return table["columns"] if table else []

    def _catalog_query(self, query: str, params: Dict[str, Any]) -> Optional[List[Dict[str, Any]]]:
        table_name = params.get("table_name")
        if query == TABLE_EXISTS_SQL:
            return [{"count": int(table_name in self.tables)}]
        if query == COLUMN_EXISTS_SQL:
            names = [c["name"] for c in self._columns(table_name)]
            return [{"count": int(params["column_name"] in names)}]
        if query == COLUMN_COUNT_SQL:
            return [{"count": len(self._columns(table_name))}]
        if query == LIST_TABLES_SQL:
            return [{"table_name": name, "table_type": "BASE TABLE"} for name in sorted(self.tables)]
        if query == TABLE_COLUMNS_SQL:
            return [
                {
                    "column_name": c["name"],
                    "data_type": c["data_type"],
                    "is_nullable": "YES" if c["nullable"] else "NO",
                    "column_default": c["default"],
                }
                for c in self._columns(table_name)
            ]
        if query == TABLE_SCHEMA_SQL:
            return [
                {
                    "column_name": c["name"],
                    "data_type": c["data_type"],
                    "character_maximum_length": None,
                    "numeric_precision": None,
                    "numeric_scale": None,
                    "is_nullable": "YES" if c["nullable"] else "NO",
                    "column_default": c["default"],
                    "ordinal_position": position,
                    "is_primary_key": c["is_primary"],
                }
                for position, c in enumerate(self._columns(table_name), start=1)
            ]
        return None

    def _require_table(self, name: str) -> Dict[str, Any]:
        if name not in self.tables:
            raise TableAdminError(
                ErrorKind.DATABASE, f'relation "{name}" does not exist', code="42P01"
            )
        return self.tables[name]

    def _statement(self, query: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        match = CREATE_TABLE.match(query)
        if match:
            name = _unquote(match.group(1))
            if name in self.tables:
                raise TableAdminError(
                    ErrorKind.DATABASE, f'relation "{name}" already exists', code="42P07"
                )
            columns, primary_keys = [], []
            for clause in match.group(2).split(",\n  "):
                pk = PRIMARY_KEY_CLAUSE.match(clause)
                if pk:
                    primary_keys = [_unquote(n) for n in re.findall(IDENT, pk.group(1))]
                    continue
                col = COLUMN_CLAUSE.match(clause)
                columns.append(
                    {
                        "name": _unquote(col.group(1)),
                        "data_type": _catalog_type(col.group(2)),
                        "nullable": col.group(3) is None,
                        "default": None,
                        "is_primary": False,
                    }
                )
            for column in columns:
                if column["name"] in primary_keys:
                    column["is_primary"] = True
                    column["nullable"] = False
            self.tables[name] = {"columns": columns, "rows": []}
            return []

        match = DROP_TABLE.match(query)
        if match:
            name = _unquote(match.group(1))
            self._require_table(name)
            del self.tables[name]
            return []

        match = TRUNCATE_TABLE.match(query)
        if match:
            self._require_table(_unquote(match.group(1)))["rows"] = []
            return []

        match = ADD_COLUMN.match(query)
        if match:
            table = self._require_table(_unquote(match.group(1)))
            column_name = _unquote(match.group(2))
            if any(c["name"] == column_name for c in table["columns"]):
                raise TableAdminError(
                    ErrorKind.DATABASE, f'column "{column_name}" already exists', code="42701"
                )
            table["columns"].append(
                {
                    "name": column_name,
                    "data_type": _catalog_type(match.group(3)),
                    "nullable": match.group(4) is None,
                    "default": match.group(6),
                    "is_primary": False,
                }
            )
            return []

        match = DROP_COLUMN.match(query)
        if match:
            table = self._require_table(_unquote(match.group(1)))
            column_name = _unquote(match.group(2))
            table["columns"] = [c for c in table["columns"] if c["name"] != column_name]
            for row in table["rows"]:
                row.pop(column_name, None)
            return []

        match = ROW_COUNT.match(query)
        if match:
            return [{"total": len(self._require_table(_unquote(match.group(1)))["rows"])}]

        match = PAGE_SELECT.match(query)
        if match:
            rows = self._require_table(_unquote(match.group(1)))["rows"]
            offset, limit = params["offset"], params["limit"]
            return [dict(row) for row in rows[offset:offset + limit]]

        raise AssertionError(f"Unexpected statement: {query!r}")


@pytest.fixture
def executor():
    """Create an empty in-memory catalog."""
    return FakeExecutor()


@pytest.fixture
def service(executor):
    """Create TableService bound to the in-memory catalog."""
    return TableService(executor)


@pytest.fixture
def settings():
    return Settings(
        APP_DEBUG=False,
        database=DatabaseSettings(host="localhost", name="admin_test", user="tester"),
    )


@pytest.fixture
def app(settings, executor):
    """Create the FastAPI app with the database dependency replaced."""
    application = create_app(settings)
    application.dependency_overrides[get_table_service] = lambda: TableService(executor)
    return application


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client
