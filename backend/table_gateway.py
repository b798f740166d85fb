"""
Table-style access to the backend collections.

Every collection declared in models.py is reachable by name with select,
insert, update, delete and upsert-with-conflict-key. Filters are plain
(column, operator, value) triples built with the helpers below:

    rows = await gateway.select(
        "visits",
        filters=[in_("operator_id", operator_ids), eq("status", "completed"),
                 gte("visit_date", start), lte("visit_date", end)],
        order_by="visit_date",
    )

Each write is a single committed call. Any database failure is rolled back
and re-raised as BackendError carrying the database's message.
"""
import logging
from datetime import datetime
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from fastapi import Depends
from sqlalchemy import MetaData, Table, delete, func, insert, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import Base, get_db
from errors import BackendError, ValidationError

logger = logging.getLogger(__name__)

Row = Dict[str, Any]


@dataclass(frozen=True)
class Filter:
    column: str
    op: str
    value: Any


def eq(column: str, value: Any) -> Filter:
    return Filter(column, "eq", value)


def neq(column: str, value: Any) -> Filter:
    return Filter(column, "neq", value)


def gte(column: str, value: Any) -> Filter:
    return Filter(column, "gte", value)


def lte(column: str, value: Any) -> Filter:
    return Filter(column, "lte", value)


def in_(column: str, values: Iterable[Any]) -> Filter:
    return Filter(column, "in", list(values))


def _backend_message(exc: SQLAlchemyError) -> str:
    orig = getattr(exc, "orig", None)
    return str(orig) if orig is not None else str(exc)


class TableGateway:
    """Generic table protocol over one AsyncSession"""

    def __init__(self, session: AsyncSession, metadata: Optional[MetaData] = None):
        self.session = session
        self.metadata = metadata if metadata is not None else Base.metadata

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _table(self, name: str) -> Table:
        table = self.metadata.tables.get(name)
        if table is None:
            raise ValidationError(f"Unknown table '{name}'")
        return table

    def _column(self, table: Table, name: str):
        if name not in table.c:
            raise ValidationError(f"Unknown column '{name}' on table '{table.name}'")
        return table.c[name]

    def _where(self, table: Table, filters: Sequence[Filter]):
        clauses = []
        for f in filters:
            column = self._column(table, f.column)
            if f.op == "eq":
                clauses.append(column.is_(None) if f.value is None else column == f.value)
            elif f.op == "neq":
                clauses.append(column.isnot(None) if f.value is None else column != f.value)
            elif f.op == "gte":
                clauses.append(column >= f.value)
            elif f.op == "lte":
                clauses.append(column <= f.value)
            elif f.op == "in":
                clauses.append(column.in_(f.value))
            else:
                raise ValidationError(f"Unsupported filter operator '{f.op}'")
        return clauses

    def _check_values(self, table: Table, values: Row):
        for key in values:
            self._column(table, key)

    async def _fail(self, action: str, table: str, exc: SQLAlchemyError):
        await self.session.rollback()
        message = _backend_message(exc)
        logger.error(f"Backend {action} on '{table}' failed: {message}")
        raise BackendError(message) from exc

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def select(
        self,
        table: str,
        columns: Optional[Sequence[str]] = None,
        filters: Sequence[Filter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        offset: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[Row]:
        t = self._table(table)
        projection = [self._column(t, c) for c in columns] if columns else [t]
        stmt = select(*projection).where(*self._where(t, filters))
        if order_by:
            column = self._column(t, order_by)
            stmt = stmt.order_by(column.desc() if descending else column.asc())
        if offset:
            stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)

        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as e:
            await self._fail("select", table, e)
        return [dict(row._mapping) for row in result]

    async def select_all(
        self,
        table: str,
        columns: Optional[Sequence[str]] = None,
        filters: Sequence[Filter] = (),
        order_by: str = "id",
        descending: bool = False,
        page_size: Optional[int] = None,
    ) -> List[Row]:
        """Read every matching row, one offset+limit page at a time."""
        page_size = page_size or settings.REPORT_PAGE_SIZE
        rows: List[Row] = []
        offset = 0
        while True:
            page = await self.select(
                table, columns=columns, filters=filters, order_by=order_by,
                descending=descending, offset=offset, limit=page_size,
            )
            rows.extend(page)
            if len(page) < page_size:
                break
            offset += page_size
        return rows

    async def maybe_single(
        self,
        table: str,
        filters: Sequence[Filter],
        columns: Optional[Sequence[str]] = None,
        order_by: Optional[str] = None,
    ) -> Optional[Row]:
        rows = await self.select(table, columns=columns, filters=filters, order_by=order_by, limit=1)
        return rows[0] if rows else None

    async def count(self, table: str, filters: Sequence[Filter] = ()) -> int:
        t = self._table(table)
        stmt = select(func.count()).select_from(t).where(*self._where(t, filters))
        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as e:
            await self._fail("count", table, e)
        return int(result.scalar() or 0)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def insert(self, table: str, values: Union[Row, List[Row]]) -> List[Row]:
        t = self._table(table)
        batch = values if isinstance(values, list) else [values]
        if not batch:
            return []
        for row in batch:
            self._check_values(t, row)

        # Rows may set different optional columns, so each gets its own statement
        created = []
        try:
            for row in batch:
                result = await self.session.execute(insert(t).values(**row).returning(*t.c))
                created.append(dict(result.one()._mapping))
            await self.session.commit()
        except SQLAlchemyError as e:
            await self._fail("insert", table, e)
        return created

    async def update(self, table: str, values: Row, filters: Sequence[Filter]) -> List[Row]:
        """Update matching rows and return them as they are after the write."""
        t = self._table(table)
        self._check_values(t, values)
        stmt = update(t).where(*self._where(t, filters)).values(**values).returning(*t.c)
        try:
            result = await self.session.execute(stmt)
            updated = [dict(row._mapping) for row in result]
            await self.session.commit()
        except SQLAlchemyError as e:
            await self._fail("update", table, e)
        return updated

    async def delete(self, table: str, filters: Sequence[Filter]) -> int:
        t = self._table(table)
        if not filters:
            raise ValidationError(f"Refusing to delete from '{table}' without a filter")
        stmt = delete(t).where(*self._where(t, filters))
        try:
            result = await self.session.execute(stmt)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self._fail("delete", table, e)
        return result.rowcount

    async def upsert(self, table: str, values: Row, on_conflict: Union[str, Sequence[str]]) -> Row:
        """
        Insert a row, or update the existing row that shares the conflict key.

        The conflict columns must carry a unique constraint.
        """
        t = self._table(table)
        self._check_values(t, values)
        keys = [on_conflict] if isinstance(on_conflict, str) else list(on_conflict)
        for key in keys:
            self._column(t, key)
            if key not in values:
                raise ValidationError(f"Upsert on '{table}' needs a value for '{key}'")

        dialect = self.session.bind.dialect.name
        if dialect == "postgresql":
            stmt = postgresql.insert(t).values(**values)
        elif dialect == "sqlite":
            stmt = sqlite.insert(t).values(**values)
        else:
            raise BackendError(f"Upsert is not supported on '{dialect}'")

        changes = {k: stmt.excluded[k] for k in values if k not in keys and k != "id"}
        if "updated_at" in t.c and "updated_at" not in changes:
            changes["updated_at"] = datetime.utcnow()
        if changes:
            stmt = stmt.on_conflict_do_update(index_elements=keys, set_=changes)
        else:
            stmt = stmt.on_conflict_do_nothing(index_elements=keys)

        try:
            await self.session.execute(stmt)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self._fail("upsert", table, e)

        return await self.maybe_single(table, [eq(k, values[k]) for k in keys])


async def get_gateway(db: AsyncSession = Depends(get_db)) -> TableGateway:
    """FastAPI dependency: a TableGateway over the request's session"""
    return TableGateway(db)
