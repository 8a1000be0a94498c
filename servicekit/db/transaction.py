"""Transactions carried on the request context.

`in_transaction()` opens one transaction and hands `fn` a context holding its
session; repository calls made with that context join the transaction instead of
opening their own.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Callable, TypeVar

from sqlalchemy.orm import Session, sessionmaker

from servicekit.observability.context import BACKGROUND, Context

T = TypeVar("T")

_TX_KEY = "db.tx"


def with_tx(ctx: Context | None, session: Session) -> Context:
    return (ctx or BACKGROUND).with_value(_TX_KEY, session)


def tx_from_context(ctx: Context | None) -> Session | None:
    if ctx is None:
        return None
    return ctx.value(_TX_KEY)


@contextmanager
def tx_aware_session(ctx: Context | None, sessions: sessionmaker[Session]) -> Iterator[Session]:
    """The transaction's session when `ctx` carries one, else a fresh committed scope."""

    tx = tx_from_context(ctx)
    if tx is not None:
        yield tx
        return
    with sessions.begin() as session:
        yield session


def in_transaction(ctx: Context | None, sessions: sessionmaker[Session] | None, fn: Callable[[Context], T]) -> T:
    """Run `fn` inside one transaction: commit when it returns, roll back when it raises.

    Without a session factory `fn` simply runs with `ctx`.
    """

    ctx = ctx or BACKGROUND
    if sessions is None:
        return fn(ctx)

    with sessions.begin() as session:
        return fn(with_tx(ctx, session))
