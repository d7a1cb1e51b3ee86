"""Table and schema operations for PostgreSQL."""
import logging
from collections import Counter
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Sequence

from psycopg2 import errorcodes

from ..models import (
    ColumnDefinition,
    ColumnInfo,
    OperationResult,
    PaginatedRows,
    TableColumn,
    TableSchema,
)
from ..utils.errors import ErrorKind, TableAdminError
from ..utils.validation import (
    ColumnInput,
    ValidationResult,
    coerce_column,
    validate_column_name,
    validate_column_set,
    validate_data_type,
    validate_table_name,
)
from .connection import SQLExecutor
from .query_builder import QueryBuilder

logger = logging.getLogger(__name__)

# SQLSTATE codes raised when an existence pre-check raced with another request.
RACE_OUTCOMES = {
    errorcodes.DUPLICATE_TABLE: (ErrorKind.CONFLICT, "Table '{table_name}' already exists"),
    errorcodes.DUPLICATE_COLUMN: (
        ErrorKind.CONFLICT,
        "Column '{column_name}' already exists in table '{table_name}'",
    ),
    errorcodes.UNDEFINED_TABLE: (ErrorKind.NOT_FOUND, "Table '{table_name}' does not exist"),
    errorcodes.UNDEFINED_COLUMN: (
        ErrorKind.NOT_FOUND,
        "Column '{column_name}' does not exist in table '{table_name}'",
    ),
}


def _is_nullable(value: Any) -> bool:
    if isinstance(value, str):
        return value.upper() == "YES"
    return bool(value)


class TableService:
    """Validates, builds and executes table administration statements.

    Holds no state beyond the executor it is given; construct one per
    request with that request's database session.
    """

    def __init__(self, executor: SQLExecutor):
        self.executor = executor
        self.query_builder = QueryBuilder()

    # ---------- Catalog predicates ----------
    def table_exists(self, table_name: str) -> bool:
        """Check the catalog for a table in the public schema."""
        rows = self.executor.execute(
            self.query_builder.build_table_exists(), {"table_name": table_name}
        )
        return bool(rows) and rows[0]["count"] > 0

    def column_exists(self, table_name: str, column_name: str) -> bool:
        rows = self.executor.execute(
            self.query_builder.build_column_exists(),
            {"table_name": table_name, "column_name": column_name},
        )
        return bool(rows) and rows[0]["count"] > 0

    def column_count(self, table_name: str) -> int:
        rows = self.executor.execute(
            self.query_builder.build_column_count(), {"table_name": table_name}
        )
        return int(rows[0]["count"]) if rows else 0

    def row_count(self, table_name: str) -> int:
        rows = self.executor.execute(self.query_builder.build_row_count(table_name))
        return int(rows[0]["total"]) if rows else 0

    # ---------- Helpers ----------
    @contextmanager
    def _transaction(self) -> Iterator[None]:
        """Commit once on success; roll back and re-raise on any error."""
        self.executor.begin()
        try:
            yield
            self.executor.commit()
        except Exception:
            self.executor.rollback()
            raise

    @staticmethod
    def _invalid(validation: ValidationResult) -> OperationResult:
        return OperationResult.failure(
            ErrorKind.VALIDATION, "Validation failed", errors=list(validation.errors)
        )

    @staticmethod
    def _table_missing(table_name: str) -> OperationResult:
        return OperationResult.failure(
            ErrorKind.NOT_FOUND, f"Table '{table_name}' does not exist"
        )

    def _failure(self, action: str, error: TableAdminError, **context: Any) -> OperationResult:
        """Translate a driver failure into a result.

        Duplicate/undefined object errors mean an existence pre-check lost a
        race, and are reported as conflict/not-found rather than a generic
        database failure.
        """
        error.context.update(context)
        logger.error(f"{action} failed: {error} | context={error.context}")

        if error.code in RACE_OUTCOMES:
            kind, template = RACE_OUTCOMES[error.code]
            names = {"table_name": "", "column_name": ""}
            names.update(context)
            message = template.format(**names)
        else:
            kind, message = ErrorKind.DATABASE, f"Failed to {action}"

        return OperationResult.from_error(error.to_operation_error(message, kind=kind))

    def _run_mutation(self, action: str, query: str, **context: Any) -> Optional[OperationResult]:
        """Execute one DDL statement inside a transaction.

        Returns a failure result, or None when the statement committed.
        """
        try:
            with self._transaction():
                self.executor.execute(query)
        except TableAdminError as e:
            return self._failure(action, e, sql=query, **context)
        return None

    # ---------- Read operations ----------
    def list_tables(self) -> OperationResult:
        """List all base tables in the public schema."""
        logger.info("list_tables started")
        try:
            rows = self.executor.execute(self.query_builder.build_list_tables())
        except TableAdminError as e:
            return self._failure("retrieve tables", e)

        tables = [{"table_name": r["table_name"], "table_type": r["table_type"]} for r in rows]
        logger.info(f"list_tables completed: {len(tables)} tables")
        return OperationResult.success(
            "Tables retrieved successfully", {"tables": tables, "count": len(tables)}
        )

    def check_table_exists(self, table_name: str) -> OperationResult:
        validation = validate_table_name(table_name)
        if not validation.valid:
            return self._invalid(validation)
        table_name = table_name.strip()

        try:
            exists = self.table_exists(table_name)
        except TableAdminError as e:
            return self._failure("check table existence", e, table_name=table_name)

        message = "Table exists" if exists else "Table does not exist"
        return OperationResult.success(message, {"table_name": table_name, "exists": exists})

    def get_table_schema(self, table_name: str) -> OperationResult:
        """Describe a table's columns (in ordinal order) and row count."""
        logger.info(f"get_table_schema started: {table_name}")
        validation = validate_table_name(table_name)
        if not validation.valid:
            return self._invalid(validation)
        table_name = table_name.strip()

        try:
            if not self.table_exists(table_name):
                return self._table_missing(table_name)
            schema = self._read_schema(table_name)
        except TableAdminError as e:
            return self._failure("retrieve table schema", e, table_name=table_name)

        logger.info(f"get_table_schema completed: {table_name} ({len(schema.columns)} columns)")
        return OperationResult.success("Table schema retrieved successfully", schema)

    def _read_schema(self, table_name: str) -> TableSchema:
        rows = self.executor.execute(
            self.query_builder.build_table_schema(), {"table_name": table_name}
        )
        columns = [
            ColumnInfo(
                column_name=row["column_name"],
                data_type=row["data_type"],
                character_maximum_length=row.get("character_maximum_length"),
                numeric_precision=row.get("numeric_precision"),
                numeric_scale=row.get("numeric_scale"),
                nullable=_is_nullable(row["is_nullable"]),
                default=row.get("column_default"),
                ordinal_position=row["ordinal_position"],
                is_primary_key=bool(row.get("is_primary_key")),
            )
            for row in rows
        ]
        columns.sort(key=lambda column: column.ordinal_position)
        return TableSchema(
            table_name=table_name, columns=columns, row_count=self.row_count(table_name)
        )

    def get_table_stats(self, table_name: str) -> OperationResult:
        """Summarize a table: counts, primary keys, nullable columns, types."""
        result = self.get_table_schema(table_name)
        if not result.ok:
            return result

        schema: TableSchema = result.data
        stats = {
            "table_name": schema.table_name,
            "row_count": schema.row_count,
            "column_count": len(schema.columns),
            "primary_keys": [c.column_name for c in schema.columns if c.is_primary_key],
            "nullable_columns": [c.column_name for c in schema.columns if c.nullable],
            "data_types": dict(Counter(c.data_type for c in schema.columns)),
        }
        return OperationResult.success("Table statistics retrieved successfully", stats)

    def get_table_data(self, table_name: str, limit: int = 50, offset: int = 0) -> OperationResult:
        """Fetch one page of rows.

        Columns, count and rows are three independent reads; a concurrent
        schema change between them is tolerated, not prevented.
        """
        logger.info(f"get_table_data started: {table_name} limit={limit} offset={offset}")
        validation = validate_table_name(table_name)
        if limit < 1:
            validation.errors.append("Limit must be at least 1")
        if offset < 0:
            validation.errors.append("Offset cannot be negative")
        if not validation.valid:
            return self._invalid(validation)
        table_name = table_name.strip()

        try:
            if not self.table_exists(table_name):
                return self._table_missing(table_name)

            column_rows = self.executor.execute(
                self.query_builder.build_table_columns(), {"table_name": table_name}
            )
            total_rows = self.row_count(table_name)
            query, params = self.query_builder.build_paginated_select(table_name, limit, offset)
            rows = self.executor.execute(query, params)
        except TableAdminError as e:
            return self._failure("retrieve table data", e, table_name=table_name)

        columns = [
            TableColumn(
                column_name=row["column_name"],
                data_type=row["data_type"],
                nullable=_is_nullable(row["is_nullable"]),
                default=row.get("column_default"),
            )
            for row in column_rows
        ]
        page = PaginatedRows.build(table_name, columns, rows, total_rows, limit, offset)
        logger.info(
            f"get_table_data completed: {table_name} returned {len(rows)} of {total_rows} rows"
        )
        return OperationResult.success("Table data retrieved successfully", page)

    def health(self) -> OperationResult:
        """Check that the catalog is reachable."""
        try:
            tables = self.executor.execute(self.query_builder.build_list_tables())
        except TableAdminError as e:
            return self._failure("check table service health", e)

        checks = {
            "database_connection": {"healthy": True, "message": "Database connection is working"},
            "table_access": {"healthy": True, "message": f"Can access {len(tables)} tables"},
        }
        return OperationResult.success(
            "Table service health check completed",
            {"total_tables": len(tables), "checks": checks},
        )

    # ---------- Mutating operations ----------
    def create_table(self, table_name: str, columns: Sequence[ColumnInput]) -> OperationResult:
        """Create a table; primary-key columns form one composite constraint."""
        logger.info(f"create_table started: {table_name} ({len(columns or [])} columns)")
        validation = validate_table_name(table_name)
        validation.extend(validate_column_set(columns))
        if not validation.valid:
            return self._invalid(validation)

        table_name = table_name.strip()
        definitions: List[ColumnDefinition] = []
        for column in columns:
            definition = coerce_column(column, validation)
            definitions.append(
                definition.model_copy(
                    update={"name": definition.name.strip(), "type": definition.type.strip()}
                )
            )

        try:
            if self.table_exists(table_name):
                return OperationResult.failure(
                    ErrorKind.CONFLICT, f"Table '{table_name}' already exists"
                )
        except TableAdminError as e:
            return self._failure("create table", e, table_name=table_name)

        query = self.query_builder.build_create_table(table_name, definitions)
        failure = self._run_mutation("create table", query, table_name=table_name)
        if failure is not None:
            return failure

        logger.info(f"create_table completed: {table_name} | sql={query!r}")
        return OperationResult.success(
            f"Table '{table_name}' created successfully",
            {
                "table_name": table_name,
                "sql": query,
                "columns": [d.model_dump(by_alias=True) for d in definitions],
                "primary_keys": self.query_builder.primary_key_names(definitions),
            },
            created=True,
        )

    def drop_table(self, table_name: str, cascade: bool = False) -> OperationResult:
        logger.info(f"drop_table started: {table_name} cascade={cascade}")
        validation = validate_table_name(table_name)
        if not validation.valid:
            return self._invalid(validation)
        table_name = table_name.strip()

        try:
            if not self.table_exists(table_name):
                return self._table_missing(table_name)
        except TableAdminError as e:
            return self._failure("drop table", e, table_name=table_name)

        query = self.query_builder.build_drop_table(table_name, cascade)
        failure = self._run_mutation("drop table", query, table_name=table_name)
        if failure is not None:
            return failure

        logger.info(f"drop_table completed: {table_name}")
        return OperationResult.success(
            f"Table '{table_name}' deleted successfully",
            {"table_name": table_name, "sql": query},
        )

    def truncate_table(self, table_name: str) -> OperationResult:
        """Remove every row from a table, keeping its structure."""
        logger.info(f"truncate_table started: {table_name}")
        validation = validate_table_name(table_name)
        if not validation.valid:
            return self._invalid(validation)
        table_name = table_name.strip()

        try:
            if not self.table_exists(table_name):
                return self._table_missing(table_name)
        except TableAdminError as e:
            return self._failure("truncate table", e, table_name=table_name)

        query = self.query_builder.build_truncate_table(table_name)
        failure = self._run_mutation("truncate table", query, table_name=table_name)
        if failure is not None:
            return failure

        logger.info(f"truncate_table completed: {table_name}")
        return OperationResult.success(
            f"Table '{table_name}' truncated successfully",
            {"table_name": table_name, "sql": query},
        )

    def add_column(
        self,
        table_name: str,
        column_name: str,
        column_type: str,
        nullable: bool = True,
        default: Optional[Any] = None,
    ) -> OperationResult:
        """Add a column; a non-None default is quoted by the executor."""
        logger.info(f"add_column started: {table_name}.{column_name} {column_type}")
        validation = validate_table_name(table_name)
        validation.extend(validate_column_name(column_name))
        validation.extend(validate_data_type(column_type))
        if not validation.valid:
            return self._invalid(validation)

        table_name = table_name.strip()
        column = ColumnDefinition(
            name=column_name.strip(), type=column_type.strip(), nullable=nullable
        )

        default_clause = ""
        if default is not None:
            try:
                default_clause = f" DEFAULT {self.executor.quote_literal(default)}"
            except TableAdminError as e:
                if e.kind != ErrorKind.VALIDATION:
                    return self._failure("add column", e, table_name=table_name, column_name=column.name)
                return OperationResult.failure(
                    ErrorKind.VALIDATION, "Validation failed", errors=[f"Default value: {e.message}"]
                )

        try:
            if not self.table_exists(table_name):
                return self._table_missing(table_name)
            if self.column_exists(table_name, column.name):
                return OperationResult.failure(
                    ErrorKind.CONFLICT,
                    f"Column '{column.name}' already exists in table '{table_name}'",
                )
            query = self.query_builder.build_add_column(table_name, column) + default_clause
        except TableAdminError as e:
            return self._failure("add column", e, table_name=table_name, column_name=column.name)

        failure = self._run_mutation(
            "add column", query, table_name=table_name, column_name=column.name
        )
        if failure is not None:
            return failure

        logger.info(f"add_column completed: {table_name}.{column.name} | sql={query!r}")
        return OperationResult.success(
            f"Column '{column.name}' added to table '{table_name}' successfully",
            {"table_name": table_name, "column_name": column.name, "sql": query},
            created=True,
        )

    def drop_column(self, table_name: str, column_name: str, cascade: bool = False) -> OperationResult:
        """Drop a column. The last remaining column of a table is never dropped."""
        logger.info(f"drop_column started: {table_name}.{column_name} cascade={cascade}")
        validation = validate_table_name(table_name)
        validation.extend(validate_column_name(column_name))
        if not validation.valid:
            return self._invalid(validation)
        table_name = table_name.strip()
        column_name = column_name.strip()

        try:
            if not self.table_exists(table_name):
                return self._table_missing(table_name)
            if not self.column_exists(table_name, column_name):
                return OperationResult.failure(
                    ErrorKind.NOT_FOUND,
                    f"Column '{column_name}' does not exist in table '{table_name}'",
                )
            if self.column_count(table_name) <= 1:
                return OperationResult.failure(
                    ErrorKind.VALIDATION,
                    f"Cannot drop the last column from table '{table_name}'",
                )
        except TableAdminError as e:
            return self._failure("drop column", e, table_name=table_name, column_name=column_name)

        query = self.query_builder.build_drop_column(table_name, column_name, cascade)
        failure = self._run_mutation(
            "drop column", query, table_name=table_name, column_name=column_name
        )
        if failure is not None:
            return failure

        logger.info(f"drop_column completed: {table_name}.{column_name}")
        return OperationResult.success(
            f"Column '{column_name}' removed from table '{table_name}' successfully",
            {"table_name": table_name, "column_name": column_name, "sql": query},
        )
