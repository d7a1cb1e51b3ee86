"""FastAPI server exposing PostgreSQL table administration."""
import logging
from contextlib import asynccontextmanager
from typing import Generator, Optional

from fastapi import Depends, FastAPI, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from .config import Settings, load_settings
from .database.connection import DatabaseManager
from .database.table_service import TableService
from .models import AddColumnRequest, CreateTableRequest
from .responses import (
    error_response,
    render_result,
    success_response,
    unexpected_error_response,
    validation_response,
)
from .utils.errors import TableAdminError

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_table_service(request: Request) -> Generator[TableService, None, None]:
    """Provide a TableService bound to one pooled connection for this request."""
    db_manager: DatabaseManager = request.app.state.db_manager
    with db_manager.session() as session:
        yield TableService(session)


def pagination_params(
    settings: Settings = Depends(get_settings),
    page: int = Query(1, description="Page number, starting at 1"),
    limit: Optional[int] = Query(None, description="Rows per page"),
) -> dict:
    """Clamp page/limit to sane bounds and derive the row offset."""
    limit = settings.default_page_size if limit is None else limit
    limit = min(max(limit, 1), settings.max_page_size)
    page = max(page, 1)
    return {"page": page, "limit": limit, "offset": (page - 1) * limit}


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the application. Settings are loaded from the environment if omitted."""
    settings = settings or load_settings()
    logging.getLogger().setLevel(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Starting {settings.app_name} {settings.app_version}...")
        yield
        logger.info(f"Shutting down {settings.app_name}...")
        app.state.db_manager.close()

    app = FastAPI(
        title="PostgreSQL Table Admin",
        description="HTTP API for inspecting and altering PostgreSQL tables",
        version=settings.app_version,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.db_manager = DatabaseManager(settings.database)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["GET", "POST", "DELETE", "HEAD", "OPTIONS"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)
    register_routes(app)
    return app


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = [
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()
        ]
        return validation_response(errors, "Invalid request")

    @app.exception_handler(TableAdminError)
    async def table_admin_error_handler(request: Request, exc: TableAdminError):
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
        debug = request.app.state.settings.debug
        return error_response(exc.to_operation_error("Database operation failed"), debug)

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.error(f"Unexpected error handling {request.method} {request.url.path}: {exc}", exc_info=True)
        return unexpected_error_response(exc, request.app.state.settings.debug)


def register_routes(app: FastAPI) -> None:
    @app.get("/")
    def root(settings: Settings = Depends(get_settings)):
        return success_response(
            {"service": settings.app_name, "version": settings.app_version, "endpoints": "/api/tables"},
            "PostgreSQL table admin API",
        )

    @app.get("/health")
    def health_check(settings: Settings = Depends(get_settings)):
        """Liveness check; does not touch the database."""
        return {"status": "healthy", "service": settings.app_name, "version": settings.app_version}

    @app.get("/api/tables")
    def list_tables(
        service: TableService = Depends(get_table_service),
        settings: Settings = Depends(get_settings),
    ):
        return render_result(service.list_tables(), settings.debug)

    @app.post("/api/tables")
    def create_table(
        body: CreateTableRequest,
        service: TableService = Depends(get_table_service),
        settings: Settings = Depends(get_settings),
    ):
        return render_result(service.create_table(body.table_name, body.columns), settings.debug)

    @app.get("/api/tables/health")
    def table_health(
        service: TableService = Depends(get_table_service),
        settings: Settings = Depends(get_settings),
    ):
        result = service.health()
        if not result.ok:
            return error_response(result.error, settings.debug, status_code=503)
        return render_result(result, settings.debug)

    @app.head("/api/tables/{table_name}")
    def table_exists_head(table_name: str, service: TableService = Depends(get_table_service)):
        result = service.check_table_exists(table_name)
        if not result.ok:
            return Response(status_code=result.status_code)
        return Response(status_code=200 if result.data["exists"] else 404)

    @app.get("/api/tables/{table_name}/exists")
    def table_exists(
        table_name: str,
        service: TableService = Depends(get_table_service),
        settings: Settings = Depends(get_settings),
    ):
        return render_result(service.check_table_exists(table_name), settings.debug)

    @app.delete("/api/tables/{table_name}")
    def drop_table(
        table_name: str,
        cascade: bool = False,
        service: TableService = Depends(get_table_service),
        settings: Settings = Depends(get_settings),
    ):
        return render_result(service.drop_table(table_name, cascade), settings.debug)

    @app.get("/api/tables/{table_name}/data")
    def get_table_data(
        table_name: str,
        pagination: dict = Depends(pagination_params),
        service: TableService = Depends(get_table_service),
        settings: Settings = Depends(get_settings),
    ):
        result = service.get_table_data(table_name, pagination["limit"], pagination["offset"])
        return render_result(result, settings.debug)

    @app.get("/api/tables/{table_name}/schema")
    def get_table_schema(
        table_name: str,
        service: TableService = Depends(get_table_service),
        settings: Settings = Depends(get_settings),
    ):
        return render_result(service.get_table_schema(table_name), settings.debug)

    @app.get("/api/tables/{table_name}/stats")
    def get_table_stats(
        table_name: str,
        service: TableService = Depends(get_table_service),
        settings: Settings = Depends(get_settings),
    ):
        return render_result(service.get_table_stats(table_name), settings.debug)

    @app.post("/api/tables/{table_name}/truncate")
    def truncate_table(
        table_name: str,
        service: TableService = Depends(get_table_service),
        settings: Settings = Depends(get_settings),
    ):
        return render_result(service.truncate_table(table_name), settings.debug)

    @app.post("/api/tables/{table_name}/columns")
    def add_column(
        table_name: str,
        body: AddColumnRequest,
        service: TableService = Depends(get_table_service),
        settings: Settings = Depends(get_settings),
    ):
        result = service.add_column(
            table_name,
            body.column_name,
            body.column_type,
            nullable=body.is_nullable,
            default=body.default_value,
        )
        return render_result(result, settings.debug)

    @app.delete("/api/tables/{table_name}/columns/{column_name}")
    def drop_column(
        table_name: str,
        column_name: str,
        cascade: bool = False,
        service: TableService = Depends(get_table_service),
        settings: Settings = Depends(get_settings),
    ):
        return render_result(service.drop_column(table_name, column_name, cascade), settings.debug)


def main() -> None:
    """Run the API with uvicorn using settings from the environment."""
    import uvicorn

    settings = load_settings()
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port, log_level=settings.log_level.lower())
