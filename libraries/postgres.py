"""
WEBCORE - PostgreSQL Library

Async database library on SQLAlchemy 2.0 and asyncpg, registered as
``db:postgres``. Repositories address tables by name and filter rows
with ``Filter`` expressions, so modules need no ORM models of their own.
"""
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncGenerator, Dict, List, Optional, Sequence
import logging

from sqlalchemy import column, delete, func, insert, literal_column, select, table, text, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.sql.elements import ColumnElement
from sqlalchemy.sql.expression import TableClause

from config import DatabaseConfig
from core.errors import LibraryContractError, WebcoreDatabaseError
from core.library import Connector, InstallParams, Library


logger = logging.getLogger("webcore.libraries.postgres")


_OPERATORS = {
    "=": lambda col, value: col == value,
    "!=": lambda col, value: col != value,
    ">": lambda col, value: col > value,
    ">=": lambda col, value: col >= value,
    "<": lambda col, value: col < value,
    "<=": lambda col, value: col <= value,
    "in": lambda col, value: col.in_(list(value)),
    "like": lambda col, value: col.like(value),
    "is_null": lambda col, value: col.is_(None) if value else col.is_not(None),
}


@dataclass(frozen=True)
class Filter:
    """A single ``column <op> value`` condition."""

    column: str
    op: str
    value: Any = None

    def __post_init__(self) -> None:
        if self.op not in _OPERATORS:
            raise ValueError(
                f"Unsupported filter operator '{self.op}'; "
                f"expected one of {', '.join(_OPERATORS)}"
            )

    def to_clause(self) -> ColumnElement:
        return _OPERATORS[self.op](column(self.column), self.value)


def where(**equals: Any) -> List[Filter]:
    """Shorthand for equality filters: ``where(id=1, active=True)``."""
    return [Filter(name, "=", value) for name, value in equals.items()]


def _table(name: str, columns: Sequence[str] = ()) -> TableClause:
    return table(name, *[column(c) for c in columns])


class PostgresDatabase(Library, Connector):
    """
    Async PostgreSQL library.

    Features:
    - Connection pooling with asyncpg
    - Automatic session management
    - Table-level CRUD helpers with filter expressions
    """

    def __init__(self):
        self.config: Optional[DatabaseConfig] = None
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker] = None

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def install(self, params: InstallParams) -> None:
        if not isinstance(params.config, DatabaseConfig):
            raise LibraryContractError(
                f"db:postgres expects DatabaseConfig, got {type(params.config).__name__}",
                library="db:postgres",
                offending_type=type(params.config),
            )
        self.config = params.config

    async def connect(self) -> None:
        """Create the engine and verify the server answers."""
        config = self.config
        self._engine = create_async_engine(
            config.url,
            pool_size=config.pool_size,
            max_overflow=config.max_overflow,
            pool_timeout=config.pool_timeout,
            echo=config.echo,
            pool_pre_ping=True,
            pool_recycle=1800,
        )
        self._session_factory = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

        try:
            await self.ping()
        except Exception:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
            raise

        logger.info(
            f"PostgreSQL connected to {config.host}:{config.port}/{config.name} "
            f"(pool_size={config.pool_size}, max_overflow={config.max_overflow})"
        )

    async def disconnect(self) -> None:
        if self._engine:
            await self._engine.dispose()
            logger.info("PostgreSQL connections closed")
        self._engine = None
        self._session_factory = None

    async def uninstall(self) -> None:
        self.config = None

    # -------------------------------------------------------------------------
    # Sessions
    # -------------------------------------------------------------------------

    @property
    def driver(self) -> str:
        return "postgres"

    @property
    def name(self) -> str:
        """Name of the configured database."""
        return self.config.name if self.config else ""

    @property
    def engine(self) -> Optional[AsyncEngine]:
        return self._engine

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Transactional session: commits on success, rolls back on error."""
        if self._session_factory is None:
            raise WebcoreDatabaseError("PostgreSQL is not connected", database="postgres")

        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def ping(self) -> bool:
        if self._engine is None:
            raise WebcoreDatabaseError("PostgreSQL is not connected", database="postgres")
        async with self._engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True

    async def _execute(self, statement: Any) -> Any:
        try:
            async with self.session() as session:
                result = await session.execute(statement)
                return result
        except SQLAlchemyError as e:
            logger.error(f"PostgreSQL statement failed: {e}")
            raise WebcoreDatabaseError(
                f"Database operation failed: {e}",
                database="postgres",
                query=str(statement),
                cause=e,
            ) from e

    # -------------------------------------------------------------------------
    # CRUD
    # -------------------------------------------------------------------------

    async def find(
        self,
        table_name: str,
        filters: Sequence[Filter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        columns: Sequence[str] = (),
    ) -> List[Dict[str, Any]]:
        """Return matching rows as dictionaries, all columns unless named."""
        selected = [column(c) for c in columns] or [literal_column("*")]
        statement = select(*selected).select_from(_table(table_name))
        for f in filters:
            statement = statement.where(f.to_clause())
        if order_by:
            statement = statement.order_by(column(order_by).desc() if descending else column(order_by))
        if limit is not None:
            statement = statement.limit(limit)
        if offset is not None:
            statement = statement.offset(offset)

        result = await self._execute(statement)
        return [dict(row) for row in result.mappings().all()]

    async def find_one(
        self,
        table_name: str,
        filters: Sequence[Filter] = (),
        columns: Sequence[str] = (),
    ) -> Optional[Dict[str, Any]]:
        rows = await self.find(table_name, filters, limit=1, columns=columns)
        return rows[0] if rows else None

    async def count(self, table_name: str, filters: Sequence[Filter] = ()) -> int:
        statement = select(func.count()).select_from(_table(table_name))
        for f in filters:
            statement = statement.where(f.to_clause())
        result = await self._execute(statement)
        return int(result.scalar_one())

    async def insert_one(self, table_name: str, values: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a row and return it as stored, including generated columns."""
        statement = (
            insert(_table(table_name, list(values)))
            .values(**values)
            .returning(literal_column("*"))
        )
        result = await self._execute(statement)
        row = result.mappings().first()
        return dict(row) if row else dict(values)

    async def update(
        self,
        table_name: str,
        values: Dict[str, Any],
        filters: Sequence[Filter],
    ) -> int:
        """Update matching rows; returns the number of rows changed."""
        statement = update(_table(table_name, list(values))).values(**values)
        for f in filters:
            statement = statement.where(f.to_clause())
        result = await self._execute(statement)
        return result.rowcount

    async def delete(self, table_name: str, filters: Sequence[Filter]) -> int:
        """Delete matching rows; returns the number of rows removed."""
        statement = delete(_table(table_name))
        for f in filters:
            statement = statement.where(f.to_clause())
        result = await self._execute(statement)
        return result.rowcount

    async def update_one(
        self,
        table_name: str,
        values: Dict[str, Any],
        filters: Sequence[Filter],
    ) -> int:
        """Update the first matching row; returns 1, or 0 if none matched."""
        statement = (
            update(_table(table_name, list(values)))
            .values(**values)
            .where(_first_match(table_name, filters))
        )
        result = await self._execute(statement)
        return result.rowcount

    async def delete_one(self, table_name: str, filters: Sequence[Filter]) -> int:
        """Delete the first matching row; returns 1, or 0 if none matched."""
        statement = delete(_table(table_name)).where(_first_match(table_name, filters))
        result = await self._execute(statement)
        return result.rowcount


def _first_match(table_name: str, filters: Sequence[Filter]) -> ColumnElement:
    # ctid pins a single physical row, so tables need no primary key
    target = select(column("ctid")).select_from(_table(table_name))
    for f in filters:
        target = target.where(f.to_clause())
    return column("ctid") == target.limit(1).correlate(None).scalar_subquery()
