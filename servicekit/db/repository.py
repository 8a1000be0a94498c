from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any, Generic, TypeVar

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session, sessionmaker

from servicekit.db.models import Base
from servicekit.db.transaction import tx_aware_session
from servicekit.observability.context import Context, current_context, use_context

M = TypeVar("M", bound=Base)


class BaseRepository(Generic[M]):
    """CRUD for a model with an integer `id` primary key.

    Writes join the transaction carried on `ctx` when there is one. Queries carry
    `ctx` as the `log_context` execution option and flushes run with it as the ambient
    context, so every query log shows the request's fields.
    """

    def __init__(self, model: type[M], sessions: sessionmaker[Session]) -> None:
        self.model = model
        self.sessions = sessions
        self._id = getattr(model, "id")

    def _options(self, ctx: Context | None) -> dict[str, Any]:
        return {"log_context": ctx if ctx is not None else current_context()}

    def first(self, ctx: Context | None, id: int) -> M:
        """Raises `sqlalchemy.exc.NoResultFound` when no row matches."""

        with tx_aware_session(ctx, self.sessions) as session:
            stmt = select(self.model).where(self._id == id)
            return session.execute(stmt, execution_options=self._options(ctx)).scalar_one()

    def find_by_ids(self, ctx: Context | None, ids: Sequence[int]) -> list[M]:
        with tx_aware_session(ctx, self.sessions) as session:
            stmt = select(self.model).where(self._id.in_(list(ids)))
            return list(session.execute(stmt, execution_options=self._options(ctx)).scalars().all())

    def find_all(self, ctx: Context | None) -> list[M]:
        with tx_aware_session(ctx, self.sessions) as session:
            return list(session.execute(select(self.model), execution_options=self._options(ctx)).scalars().all())

    def create(self, ctx: Context | None, entity: M) -> M:
        with tx_aware_session(ctx, self.sessions) as session:
            session.add(entity)
            # flush() takes no execution options; the tracer falls back to the ambient context.
            with use_context(self._options(ctx)["log_context"]):
                session.flush()
        return entity

    def update(self, ctx: Context | None, id: int, values: Mapping[str, Any]) -> int:
        with tx_aware_session(ctx, self.sessions) as session:
            stmt = update(self.model).where(self._id == id).values(**values)
            return session.execute(stmt, execution_options=self._options(ctx)).rowcount

    def delete(self, ctx: Context | None, id: int) -> int:
        with tx_aware_session(ctx, self.sessions) as session:
            stmt = delete(self.model).where(self._id == id)
            return session.execute(stmt, execution_options=self._options(ctx)).rowcount
