"""Tenant-scoped data access.

``TenantDB`` wraps an ``AsyncSession`` for one organization. Every query it
builds is pinned to that organization's ``tenant_id``:

* reads (``find_one``, ``find``, ``count``, ``aggregate``) AND a tenant
  equality onto the caller's filter;
* inserts stamp the tenant id onto the row;
* updates refuse to touch ``tenant_id``, however deeply it is nested;
* deletes are filtered like reads;
* columns and clauses from any other table are rejected, because only the
  model's own table carries the tenant predicate.

A caller filter that names a *different* tenant is treated as a programming
error and raises ``CrossTenantAccessError`` instead of being overridden.

Filters are plain mappings of column name to value. ``None`` becomes
``IS NULL`` and a list / tuple / set becomes ``IN``. Arbitrary SQLAlchemy
clauses may be passed positionally after the mapping::

    db = TenantDB(session, auth.tenant_id)
    late = await db.find(
        AttendanceLog,
        {"date": today},
        AttendanceLog.is_late.is_(True),
        order_by=AttendanceLog.check_in_time.desc(),
    )
"""

import logging
import uuid
from collections.abc import Iterable, Mapping, Sequence
from typing import Any, TypeVar

from sqlalchemy import delete, func, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import visitors
from sqlalchemy.sql.elements import BinaryExpression, BindParameter, ColumnElement
from sqlalchemy.sql.schema import Column
from sqlmodel import SQLModel, select

from timewise.core.errors import CrossTenantAccessError, DatabaseError, ValidationError
from timewise.models.base import utcnow

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=SQLModel)

TENANT_FIELD = "tenant_id"


def _coerce_tenant_id(value: Any) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError as exc:
        raise ValidationError("Invalid tenant ID format") from exc


def _contains_tenant_key(values: Any) -> bool:
    """True if ``tenant_id`` appears as a key anywhere inside ``values``."""
    if isinstance(values, Mapping):
        return any(
            key == TENANT_FIELD or _contains_tenant_key(nested)
            for key, nested in values.items()
        )
    if isinstance(values, (list, tuple, set)):
        return any(_contains_tenant_key(item) for item in values)
    return False


def _as_tuple(value: Any) -> tuple:
    if value is None:
        return ()
    if isinstance(value, (list, tuple)):
        return tuple(value)
    return (value,)


class TenantDB:
    """Data accessor bound to a single organization."""

    def __init__(self, session: AsyncSession, tenant_id: uuid.UUID | str | None) -> None:
        if tenant_id is None or (isinstance(tenant_id, str) and not tenant_id.strip()):
            raise ValidationError("Tenant ID is required for database operations")
        self.session = session
        self.tenant_id = _coerce_tenant_id(tenant_id)

    # ── Reads ─────────────────────────────────────────────────

    async def find_one(
        self,
        model: type[ModelT],
        filters: Mapping[str, Any] | None = None,
        *where: ColumnElement[bool],
        order_by: Any = None,
    ) -> ModelT | None:
        stmt = select(model).where(*self._conditions(model, filters, where))
        stmt = stmt.order_by(*_as_tuple(order_by)).limit(1)
        result = await self._execute(stmt)
        return result.scalars().first()

    async def find(
        self,
        model: type[ModelT],
        filters: Mapping[str, Any] | None = None,
        *where: ColumnElement[bool],
        order_by: Any = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[ModelT]:
        stmt = select(model).where(*self._conditions(model, filters, where))
        stmt = stmt.order_by(*_as_tuple(order_by))
        if limit is not None:
            stmt = stmt.limit(limit)
        if offset:
            stmt = stmt.offset(offset)
        result = await self._execute(stmt)
        return list(result.scalars().all())

    async def count(
        self,
        model: type[SQLModel],
        filters: Mapping[str, Any] | None = None,
        *where: ColumnElement[bool],
    ) -> int:
        stmt = (
            select(func.count())
            .select_from(model)
            .where(*self._conditions(model, filters, where))
        )
        result = await self._execute(stmt)
        return int(result.scalar_one())

    async def aggregate(
        self,
        model: type[SQLModel],
        columns: Sequence[Any],
        filters: Mapping[str, Any] | None = None,
        *where: ColumnElement[bool],
        group_by: Iterable[Any] = (),
        order_by: Any = None,
        limit: int | None = None,
    ) -> list[Any]:
        """Grouped query; the tenant predicate is applied before any grouping."""
        stmt = (
            select(*columns)
            .select_from(model)
            .where(*self._conditions(model, filters, where))
            .group_by(*group_by)
            .order_by(*_as_tuple(order_by))
        )
        self._check_froms(model, stmt)
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self._execute(stmt)
        return list(result.all())

    # ── Writes ────────────────────────────────────────────────

    async def insert_one(self, obj: ModelT) -> ModelT:
        """Stamp the tenant onto ``obj`` and flush it.

        ``IntegrityError`` is left to the caller so unique-index guards can be
        translated into domain conflicts.
        """
        self._stamp(obj)
        self.session.add(obj)
        await self._flush()
        return obj

    async def insert_many(self, objs: Sequence[ModelT]) -> list[ModelT]:
        for obj in objs:
            self._stamp(obj)
        self.session.add_all(list(objs))
        await self._flush()
        return list(objs)

    async def update_one(
        self,
        model: type[SQLModel],
        filters: Mapping[str, Any] | None,
        values: Mapping[str, Any],
        *where: ColumnElement[bool],
    ) -> int:
        """Update at most one matching row. Returns the number of rows changed."""
        self._check_update_values(model, values)
        conditions = self._conditions(model, filters, where)
        row_id = (
            await self._execute(select(model.id).where(*conditions).limit(1))  # type: ignore[attr-defined]
        ).scalar_one_or_none()
        if row_id is None:
            return 0
        stmt = (
            update(model)
            .where(model.id == row_id, *conditions)  # type: ignore[attr-defined]
            .values(**self._with_timestamp(model, values))
            .execution_options(synchronize_session=False)
        )
        result = await self._execute(stmt)
        return result.rowcount or 0

    async def update_many(
        self,
        model: type[SQLModel],
        filters: Mapping[str, Any] | None,
        values: Mapping[str, Any],
        *where: ColumnElement[bool],
    ) -> int:
        self._check_update_values(model, values)
        stmt = (
            update(model)
            .where(*self._conditions(model, filters, where))
            .values(**self._with_timestamp(model, values))
            .execution_options(synchronize_session=False)
        )
        result = await self._execute(stmt)
        return result.rowcount or 0

    async def delete_one(
        self,
        model: type[SQLModel],
        filters: Mapping[str, Any] | None,
        *where: ColumnElement[bool],
    ) -> int:
        conditions = self._conditions(model, filters, where)
        row_id = (
            await self._execute(select(model.id).where(*conditions).limit(1))  # type: ignore[attr-defined]
        ).scalar_one_or_none()
        if row_id is None:
            return 0
        stmt = (
            delete(model)
            .where(model.id == row_id, *conditions)  # type: ignore[attr-defined]
            .execution_options(synchronize_session=False)
        )
        result = await self._execute(stmt)
        return result.rowcount or 0

    async def delete_many(
        self,
        model: type[SQLModel],
        filters: Mapping[str, Any] | None,
        *where: ColumnElement[bool],
    ) -> int:
        stmt = (
            delete(model)
            .where(*self._conditions(model, filters, where))
            .execution_options(synchronize_session=False)
        )
        result = await self._execute(stmt)
        return result.rowcount or 0

    # ── Internal helpers ──────────────────────────────────────

    def _tenant_column(self, model: type[SQLModel]) -> Any:
        column = getattr(model, TENANT_FIELD, None)
        if column is None or not hasattr(column, "property"):
            raise ValidationError(f"{model.__name__} is not a tenant-scoped table")
        return column

    def _conditions(
        self,
        model: type[SQLModel],
        filters: Mapping[str, Any] | None,
        where: Iterable[ColumnElement[bool]],
    ) -> list[ColumnElement[bool]]:
        conditions: list[ColumnElement[bool]] = [self._tenant_column(model) == self.tenant_id]

        for key, value in (filters or {}).items():
            if key == TENANT_FIELD:
                self._assert_same_tenant(value)
                continue
            column = getattr(model, key, None)
            if column is None or not hasattr(column, "property"):
                raise ValidationError(f"Unknown field '{key}' for {model.__name__}")
            if value is None:
                conditions.append(column.is_(None))
            elif isinstance(value, (list, tuple, set, frozenset)):
                conditions.append(column.in_(list(value)))
            else:
                conditions.append(column == value)

        for clause in where:
            self._inspect_clause(clause)
            conditions.append(clause)
        self._check_froms(model, select(self._tenant_column(model)).where(*conditions))
        return conditions

    def _assert_same_tenant(self, value: Any) -> None:
        try:
            requested = _coerce_tenant_id(value)
        except ValidationError:
            requested = None
        if requested != self.tenant_id:
            logger.warning(
                "Blocked cross-tenant filter (requested=%s)", value,
                extra={"tenant_id": self.tenant_id},
            )
            raise CrossTenantAccessError("Cannot query data from another tenant")

    def _inspect_clause(self, clause: ColumnElement[bool]) -> None:
        """Reject ``tenant_id == <other>`` comparisons hidden in raw clauses."""
        for element in visitors.iterate(clause):
            if not isinstance(element, BinaryExpression):
                continue
            left, right = element.left, element.right
            if isinstance(right, Column) or getattr(right, "key", None) == TENANT_FIELD:
                left, right = right, left
            if getattr(left, "key", None) != TENANT_FIELD or not isinstance(right, BindParameter):
                continue
            value = right.effective_value
            values = value if isinstance(value, (list, tuple, set)) else [value]
            for item in values:
                self._assert_same_tenant(item)

    def _check_froms(self, model: type[SQLModel], stmt: Any) -> None:
        """Reject statements that pull in a table other than ``model``'s own.

        Only ``model`` carries the tenant predicate, so any other FROM would be
        read unscoped.
        """
        table = model.__table__  # type: ignore[attr-defined]
        for from_ in stmt.get_final_froms():
            if from_ is not table:
                logger.warning(
                    "Blocked query joining %s into %s", getattr(from_, "name", from_),
                    table.name, extra={"tenant_id": self.tenant_id},
                )
                raise CrossTenantAccessError("Cannot query tables outside the tenant scope")

    def _stamp(self, obj: SQLModel) -> None:
        self._tenant_column(type(obj))
        current = getattr(obj, TENANT_FIELD, None)
        if current is not None and _coerce_tenant_id(current) != self.tenant_id:
            raise CrossTenantAccessError("Cannot insert data for another tenant")
        setattr(obj, TENANT_FIELD, self.tenant_id)

    def _check_update_values(self, model: type[SQLModel], values: Mapping[str, Any]) -> None:
        if not values:
            raise ValidationError("Update values cannot be empty")
        if _contains_tenant_key(values):
            raise ValidationError("Cannot modify tenant_id")
        for key in values:
            column = getattr(model, key, None)
            if column is None or not hasattr(column, "property"):
                raise ValidationError(f"Unknown field '{key}' for {model.__name__}")

    @staticmethod
    def _with_timestamp(model: type[SQLModel], values: Mapping[str, Any]) -> dict[str, Any]:
        data = dict(values)
        if hasattr(model, "updated_at") and "updated_at" not in data:
            data["updated_at"] = utcnow()
        return data

    async def _execute(self, stmt: Any) -> Any:
        try:
            return await self.session.execute(stmt)
        except IntegrityError:
            raise
        except SQLAlchemyError as exc:
            logger.exception("Tenant query failed", extra={"tenant_id": self.tenant_id})
            raise DatabaseError() from exc

    async def _flush(self) -> None:
        try:
            await self.session.flush()
        except IntegrityError:
            raise
        except SQLAlchemyError as exc:
            logger.exception("Tenant insert failed", extra={"tenant_id": self.tenant_id})
            raise DatabaseError() from exc
