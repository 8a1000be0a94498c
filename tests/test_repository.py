import pytest
from sqlalchemy import Integer, String
from sqlalchemy.exc import NoResultFound
from sqlalchemy.orm import Mapped, mapped_column

from servicekit.db.models import Base
from servicekit.db.repository import BaseRepository
from servicekit.db.session import create_traced_engine, get_engine, get_session_factory
from servicekit.db.transaction import in_transaction, tx_from_context
from servicekit.observability import fields
from servicekit.observability.context import BACKGROUND, bind_fields


class Widget(Base):
    __tablename__ = "widgets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(64))


@pytest.fixture
def sessions():
    engine = create_traced_engine("sqlite+pysqlite:///:memory:")
    Base.metadata.create_all(engine)
    yield get_session_factory(engine)
    engine.dispose()


@pytest.fixture
def widgets(sessions) -> BaseRepository[Widget]:
    return BaseRepository(Widget, sessions)


def test_create_and_first(widgets) -> None:
    created = widgets.create(None, Widget(name="gear"))

    found = widgets.first(None, created.id)

    assert found.name == "gear"
    with pytest.raises(NoResultFound):
        widgets.first(None, 999)


def test_find_update_delete(widgets) -> None:
    a = widgets.create(None, Widget(name="a"))
    b = widgets.create(None, Widget(name="b"))
    widgets.create(None, Widget(name="c"))

    assert sorted(w.name for w in widgets.find_by_ids(None, [a.id, b.id])) == ["a", "b"]
    assert len(widgets.find_all(None)) == 3

    assert widgets.update(None, a.id, {"name": "renamed"}) == 1
    assert widgets.first(None, a.id).name == "renamed"

    assert widgets.delete(None, b.id) == 1
    assert widgets.delete(None, b.id) == 0
    assert len(widgets.find_all(None)) == 2


def test_transaction_commits_on_return(widgets, sessions) -> None:
    def work(tx):
        assert tx_from_context(tx) is not None
        widgets.create(tx, Widget(name="one"))
        widgets.create(tx, Widget(name="two"))
        return len(widgets.find_all(tx))

    assert in_transaction(None, sessions, work) == 2
    assert len(widgets.find_all(None)) == 2


def test_transaction_rolls_back_on_error(widgets, sessions) -> None:
    def work(tx):
        widgets.create(tx, Widget(name="doomed"))
        raise RuntimeError("abort")

    with pytest.raises(RuntimeError):
        in_transaction(None, sessions, work)

    assert widgets.find_all(None) == []


def test_transaction_without_sessions_runs_plainly() -> None:
    ctx = bind_fields(None, fields.string("request_id", "r-1"))

    assert in_transaction(ctx, None, lambda c: c) is ctx
    assert in_transaction(None, None, lambda c: c) is BACKGROUND
    assert tx_from_context(ctx) is None


def test_queries_log_context_fields(widgets, captured_logs) -> None:
    ctx = bind_fields(None, fields.string("request_id", "r-9"))

    widgets.find_all(ctx)

    queries = [r for r in captured_logs.records if "sql" in r and "widgets" in r["sql"]]
    assert queries
    assert all(r["request_id"] == "r-9" for r in queries)
    assert queries[0]["message"] == "query success"


def test_inserts_log_context_fields(widgets, captured_logs) -> None:
    ctx = bind_fields(None, fields.string("request_id", "r-create"))

    widgets.create(ctx, Widget(name="x"))

    (insert,) = [r for r in captured_logs.records if r.get("sql", "").startswith("INSERT INTO widgets")]
    assert insert["request_id"] == "r-create"
    assert insert["rows"] == 1


def test_default_session_factory_uses_configured_engine() -> None:
    get_engine.cache_clear()
    try:
        sessions = get_session_factory()
        assert sessions.kw["bind"] is get_engine()
        assert str(get_engine().url) == "sqlite+pysqlite:///:memory:"
    finally:
        get_engine.cache_clear()
