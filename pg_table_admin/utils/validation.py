"""Input validation utilities for PostgreSQL identifiers and data types."""
import re
from typing import Any, List, Mapping, Optional, Sequence, Union

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from ..models import ColumnDefinition

MAX_IDENTIFIER_LENGTH = 63

VALID_IDENTIFIER = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")

# Length/precision suffix such as "(255)" or "(10,2)"; contents are not checked.
TYPE_MODIFIER = re.compile(r"\([^)]*\)")

# Tokens that would let raw type text terminate or comment out the statement.
FORBIDDEN_TYPE_TOKENS = (";", "--", "/*", "*/")

VALID_DATA_TYPES = (
    "SERIAL",
    "INTEGER",
    "BIGINT",
    "SMALLINT",
    "VARCHAR",
    "TEXT",
    "CHAR",
    "BOOLEAN",
    "DATE",
    "TIMESTAMP",
    "TIME",
    "DECIMAL",
    "NUMERIC",
    "REAL",
    "DOUBLE PRECISION",
    "JSON",
    "JSONB",
    "UUID",
)

RESERVED_WORDS = frozenset(
    {
        "ALL", "AND", "ANY", "AS", "ASC", "BETWEEN", "BY", "CASE", "CAST",
        "CHECK", "COLUMN", "CONSTRAINT", "CREATE", "CROSS", "CURRENT_DATE",
        "CURRENT_TIME", "CURRENT_TIMESTAMP", "CURRENT_USER", "DEFAULT",
        "DELETE", "DESC", "DISTINCT", "DROP", "ELSE", "END", "EXCEPT",
        "EXISTS", "FALSE", "FETCH", "FOR", "FOREIGN", "FROM", "FULL",
        "GROUP", "HAVING", "IN", "INNER", "INSERT", "INTERSECT", "INTO",
        "IS", "JOIN", "LEFT", "LIKE", "LIMIT", "NATURAL", "NOT", "NULL",
        "ON", "OR", "ORDER", "OUTER", "PRIMARY", "REFERENCES", "RIGHT",
        "SELECT", "SESSION_USER", "SOME", "TABLE", "THEN", "TO", "TRUE",
        "UNION", "UNIQUE", "UPDATE", "USER", "USING", "VALUES", "WHEN",
        "WHERE", "WITH",
    }
)


class ValidationResult(BaseModel):
    """Outcome of a validation check; every violation found is listed."""

    errors: List[str] = Field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors

    def extend(self, other: "ValidationResult", prefix: str = "") -> None:
        self.errors.extend(f"{prefix}{error}" for error in other.errors)


def is_reserved_word(word: str) -> bool:
    """Check a word against the reserved keyword list, ignoring case."""
    return word.strip().upper() in RESERVED_WORDS


def validate_identifier(name: Optional[str], label: str = "Identifier") -> ValidationResult:
    """Validate a table or column name against PostgreSQL identifier rules.

    An empty name short-circuits; all other violations accumulate.
    """
    result = ValidationResult()
    trimmed = "" if name is None else str(name).strip()

    if not trimmed:
        result.errors.append(f"{label} cannot be empty")
        return result

    if len(trimmed.encode("utf-8")) > MAX_IDENTIFIER_LENGTH:
        result.errors.append(f"{label} cannot exceed {MAX_IDENTIFIER_LENGTH} characters")

    if not VALID_IDENTIFIER.match(trimmed):
        result.errors.append(
            f"{label} must start with a letter or underscore and contain only "
            "letters, numbers, and underscores"
        )

    if is_reserved_word(trimmed):
        result.errors.append(f'"{trimmed}" is a reserved PostgreSQL keyword')

    return result


def validate_table_name(name: Optional[str]) -> ValidationResult:
    """Validate table name against SQL identifier rules."""
    return validate_identifier(name, "Table name")


def validate_column_name(name: Optional[str]) -> ValidationResult:
    """Validate column name against SQL identifier rules."""
    return validate_identifier(name, "Column name")


def base_data_type(type_string: str) -> str:
    """Uppercase a type string and drop its first parenthesized modifier."""
    return TYPE_MODIFIER.sub("", type_string.strip().upper(), count=1)


def validate_data_type(type_string: Optional[str]) -> ValidationResult:
    """Validate a PostgreSQL data type string.

    The base type must start with a whitelisted type name, so "VARCHAR(255)"
    and "DOUBLE PRECISION" pass while "DOUBLE" alone does not. Arguments
    inside the parentheses are not checked.
    """
    result = ValidationResult()
    if type_string is None or not str(type_string).strip():
        result.errors.append("Data type cannot be empty")
        return result

    type_string = str(type_string)
    if any(token in type_string for token in FORBIDDEN_TYPE_TOKENS):
        result.errors.append(f'"{type_string}" contains characters not allowed in a data type')

    base_type = base_data_type(type_string)
    if not any(base_type.startswith(valid_type) for valid_type in VALID_DATA_TYPES):
        result.errors.append(f'"{type_string}" is not a valid PostgreSQL data type')

    return result


ColumnInput = Union[ColumnDefinition, Mapping[str, Any]]


def coerce_column(
    column: ColumnInput, result: ValidationResult, prefix: str = ""
) -> Optional[ColumnDefinition]:
    """Turn a decoded JSON object into a ColumnDefinition.

    Shape errors (wrong field types, non-object entries) are recorded on
    `result` and None is returned.
    """
    if isinstance(column, ColumnDefinition):
        return column
    try:
        return ColumnDefinition.model_validate(column)
    except PydanticValidationError as e:
        for error in e.errors():
            location = ".".join(str(part) for part in error["loc"])
            detail = f"{location}: {error['msg']}" if location else error["msg"]
            result.errors.append(f"{prefix}{detail}")
        return None


def validate_column_definition(column: ColumnInput) -> ValidationResult:
    """Validate a single column definition (name and type)."""
    result = ValidationResult()
    column = coerce_column(column, result)
    if column is None:
        return result

    if column.name is None:
        result.errors.append("Column name is required")
    else:
        result.extend(validate_column_name(column.name))

    if column.type is None:
        result.errors.append("Column type is required")
    else:
        result.extend(validate_data_type(column.type))

    return result


def validate_column_set(columns: Optional[Sequence[ColumnInput]]) -> ValidationResult:
    """Validate the full column list of a new table.

    Multiple primary-key columns are allowed; they form a composite key.
    """
    result = ValidationResult()
    if not columns:
        result.errors.append("At least one column is required")
        return result

    seen = set()
    for index, raw_column in enumerate(columns, start=1):
        prefix = f"Column {index}: "
        column = coerce_column(raw_column, result, prefix)
        if column is None:
            continue
        result.extend(validate_column_definition(column), prefix=prefix)

        if column.name is not None:
            key = column.name.strip().lower()
            if key in seen:
                result.errors.append(f'Duplicate column name: "{column.name}"')
            else:
                seen.add(key)

    return result
