"""Safe SQL statement builder for PostgreSQL table administration."""
from typing import Dict, List, Sequence, Tuple

from ..models import ColumnDefinition
from ..utils.security import sanitize_identifier

TABLE_EXISTS_SQL = """
SELECT COUNT(*) AS count
FROM information_schema.tables
WHERE table_schema = 'public'
  AND table_name = :table_name
""".strip()

COLUMN_EXISTS_SQL = """
SELECT COUNT(*) AS count
FROM information_schema.columns
WHERE table_schema = 'public'
  AND table_name = :table_name
  AND column_name = :column_name
""".strip()

COLUMN_COUNT_SQL = """
SELECT COUNT(*) AS count
FROM information_schema.columns
WHERE table_schema = 'public'
  AND table_name = :table_name
""".strip()

LIST_TABLES_SQL = """
SELECT table_name, table_type
FROM information_schema.tables
WHERE table_schema = 'public'
  AND table_type = 'BASE TABLE'
ORDER BY table_name
""".strip()

TABLE_COLUMNS_SQL = """
SELECT column_name, data_type, is_nullable, column_default
FROM information_schema.columns
WHERE table_schema = 'public'
  AND table_name = :table_name
ORDER BY ordinal_position
""".strip()

TABLE_SCHEMA_SQL = """
SELECT
    c.column_name,
    c.data_type,
    c.character_maximum_length,
    c.numeric_precision,
    c.numeric_scale,
    c.is_nullable,
    c.column_default,
    c.ordinal_position,
    CASE WHEN pk.column_name IS NOT NULL THEN true ELSE false END AS is_primary_key
FROM information_schema.columns c
LEFT JOIN (
    SELECT ku.column_name
    FROM information_schema.table_constraints tc
    INNER JOIN information_schema.key_column_usage ku
        ON tc.constraint_name = ku.constraint_name
        AND tc.table_schema = ku.table_schema
    WHERE tc.constraint_type = 'PRIMARY KEY'
        AND tc.table_schema = 'public'
        AND tc.table_name = :table_name
) pk ON c.column_name = pk.column_name
WHERE c.table_schema = 'public'
    AND c.table_name = :table_name
ORDER BY c.ordinal_position
""".strip()


class QueryBuilder:
    """Builds SQL text from already-validated input.

    Identifiers are always passed through sanitize_identifier; literal values
    only ever travel as named bind parameters.
    """

    @staticmethod
    def build_column_definition(column: ColumnDefinition) -> str:
        """Build a column clause. Primary keys are emitted separately."""
        clause = f"{sanitize_identifier(column.name)} {column.type}"
        if not column.nullable:
            clause += " NOT NULL"
        return clause

    @staticmethod
    def build_create_table(table_name: str, columns: Sequence[ColumnDefinition]) -> str:
        """Build CREATE TABLE with a composite PRIMARY KEY constraint."""
        clauses = [QueryBuilder.build_column_definition(column) for column in columns]

        primary_keys = [sanitize_identifier(column.name) for column in columns if column.is_primary]
        if primary_keys:
            clauses.append(f"PRIMARY KEY ({', '.join(primary_keys)})")

        body = ",\n  ".join(clauses)
        return f"CREATE TABLE {sanitize_identifier(table_name)} (\n  {body}\n)"

    @staticmethod
    def build_drop_table(table_name: str, cascade: bool = False) -> str:
        query = f"DROP TABLE {sanitize_identifier(table_name)}"
        if cascade:
            query += " CASCADE"
        return query

    @staticmethod
    def build_truncate_table(table_name: str) -> str:
        return f"TRUNCATE TABLE {sanitize_identifier(table_name)}"

    @staticmethod
    def build_add_column(table_name: str, column: ColumnDefinition) -> str:
        """Build ALTER TABLE ... ADD COLUMN.

        A DEFAULT clause needs the connection's literal quoting, so the caller
        appends it.
        """
        definition = QueryBuilder.build_column_definition(column)
        return f"ALTER TABLE {sanitize_identifier(table_name)} ADD COLUMN {definition}"

    @staticmethod
    def build_drop_column(table_name: str, column_name: str, cascade: bool = False) -> str:
        query = (
            f"ALTER TABLE {sanitize_identifier(table_name)} "
            f"DROP COLUMN {sanitize_identifier(column_name)}"
        )
        if cascade:
            query += " CASCADE"
        return query

    @staticmethod
    def build_table_exists() -> str:
        return TABLE_EXISTS_SQL

    @staticmethod
    def build_column_exists() -> str:
        return COLUMN_EXISTS_SQL

    @staticmethod
    def build_column_count() -> str:
        return COLUMN_COUNT_SQL

    @staticmethod
    def build_list_tables() -> str:
        """Build query to list all base tables in the public schema."""
        return LIST_TABLES_SQL

    @staticmethod
    def build_table_columns() -> str:
        return TABLE_COLUMNS_SQL

    @staticmethod
    def build_table_schema() -> str:
        """Build query describing columns with primary-key membership."""
        return TABLE_SCHEMA_SQL

    @staticmethod
    def build_row_count(table_name: str) -> str:
        return f"SELECT COUNT(*) AS total FROM {sanitize_identifier(table_name)}"

    @staticmethod
    def build_paginated_select(
        table_name: str, limit: int, offset: int
    ) -> Tuple[str, Dict[str, int]]:
        """Build a page query ordered by the first column.

        The order is stable within one statement but otherwise arbitrary.
        """
        query = (
            f"SELECT * FROM {sanitize_identifier(table_name)} "
            "ORDER BY 1 LIMIT :limit OFFSET :offset"
        )
        return query, {"limit": int(limit), "offset": int(offset)}

    @staticmethod
    def primary_key_names(columns: Sequence[ColumnDefinition]) -> List[str]:
        return [column.name for column in columns if column.is_primary]
