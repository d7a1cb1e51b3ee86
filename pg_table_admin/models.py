"""Request, response and value models for table administration."""
from math import ceil
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .utils.errors import ErrorKind, OperationError


class ColumnDefinition(BaseModel):
    """Column of a table being created or altered."""

    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    type: Optional[str] = None
    nullable: bool = True
    is_primary: bool = Field(default=False, alias="isPrimary")


class CreateTableRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    table_name: str = Field(alias="tableName")
    # Entries are validated by the service so that every problem is reported.
    columns: List[Any]


class AddColumnRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    column_name: str = Field(alias="columnName")
    column_type: str = Field(alias="columnType")
    is_nullable: bool = Field(default=True, alias="isNullable")
    default_value: Optional[Any] = Field(default=None, alias="defaultValue")


class TableColumn(BaseModel):
    """Brief column description used alongside table data."""

    column_name: str
    data_type: str
    nullable: bool
    default: Optional[str] = None


class ColumnInfo(BaseModel):
    """Catalog description of one column, as reported by information_schema."""

    column_name: str
    data_type: str
    character_maximum_length: Optional[int] = None
    numeric_precision: Optional[int] = None
    numeric_scale: Optional[int] = None
    nullable: bool
    default: Optional[str] = None
    ordinal_position: int
    is_primary_key: bool = False


class TableSchema(BaseModel):
    table_name: str
    columns: List[ColumnInfo]
    row_count: int


class PaginatedRows(BaseModel):
    """One page of table rows.

    The column list, count and rows come from separate reads and are not a
    snapshot; a concurrent schema change can make them disagree slightly.
    """

    table_name: str
    columns: List[TableColumn]
    rows: List[Dict[str, Any]]
    total_rows: int
    page: int
    per_page: int
    has_more: bool

    @classmethod
    def build(
        cls,
        table_name: str,
        columns: List[TableColumn],
        rows: List[Dict[str, Any]],
        total_rows: int,
        limit: int,
        offset: int,
    ) -> "PaginatedRows":
        return cls(
            table_name=table_name,
            columns=columns,
            rows=rows,
            total_rows=total_rows,
            page=offset // limit + 1,
            per_page=limit,
            has_more=(offset + limit) < total_rows,
        )

    def pagination_meta(self) -> Dict[str, Any]:
        total_pages = ceil(self.total_rows / self.per_page) if self.per_page else 0
        first = (self.page - 1) * self.per_page + 1
        return {
            "current_page": self.page,
            "per_page": self.per_page,
            "total": self.total_rows,
            "total_pages": total_pages,
            "has_more": self.has_more,
            "from": first if self.rows else 0,
            "to": min(self.page * self.per_page, self.total_rows) if self.rows else 0,
        }


class OperationResult(BaseModel):
    """Discriminated success/error outcome of a service operation."""

    ok: bool
    message: str
    data: Optional[Any] = None
    error: Optional[OperationError] = None
    created: bool = False

    @classmethod
    def success(cls, message: str, data: Any = None, created: bool = False) -> "OperationResult":
        return cls(ok=True, message=message, data=data, created=created)

    @classmethod
    def failure(
        cls,
        kind: ErrorKind,
        message: str,
        errors: Optional[List[str]] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> "OperationResult":
        error = OperationError(kind=kind, message=message, errors=errors or [], context=context or {})
        return cls(ok=False, message=message, error=error)

    @classmethod
    def from_error(cls, error: OperationError) -> "OperationResult":
        return cls(ok=False, message=error.message, error=error)

    @property
    def status(self) -> str:
        return "success" if self.ok else "error"

    @property
    def status_code(self) -> int:
        if self.error is not None:
            return self.error.status_code
        return 201 if self.created else 200
