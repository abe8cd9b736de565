from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from ragchat.core.deadline import RequestBudget
from ragchat.core.errors import DeadlineExceeded, UpstreamUnavailable
from ragchat.indexing.pgvector_store import PGVectorStore, _to_pgvector_literal, sqlalchemy_url


def _store() -> PGVectorStore:
    return PGVectorStore.from_engine(MagicMock(name="engine"))


def _row(cid, distance):
    return {
        "id": cid, "document_id": 7, "content": "text", "heading": None, "chunk_index": 0,
        "title": "Closures", "slug": "Web/JavaScript/Closures", "source": "closures/index.md",
        "distance": distance,
    }


def test_vector_literal():
    assert _to_pgvector_literal([1, 0.5, -0.25]) == "[1.00000000,0.50000000,-0.25000000]"


def test_maps_rows_to_candidates_in_order():
    conn = MagicMock()
    conn.execute.return_value.mappings.return_value.all.return_value = [_row("a", 0.1), _row("b", 0.4)]

    out = _store().nearest_chunks(conn, [0.0, 1.0], limit=2)

    assert [(c.chunk.chunk_id, c.distance) for c in out] == [("a", 0.1), ("b", 0.4)]
    assert out[0].chunk.title == "Closures"
    sql_params = conn.execute.call_args.args[1]
    assert sql_params == {"q": "[0.00000000,1.00000000]", "k": 2}


def test_budget_sets_statement_timeout():
    conn = MagicMock()
    conn.execute.return_value.mappings.return_value.all.return_value = []

    assert _store().nearest_chunks(conn, [0.0], budget=RequestBudget(5.0)) == []

    first_params = conn.execute.call_args_list[0].args[1]
    assert 0 < int(first_params["ms"]) <= 5000


def test_driver_error_is_upstream_unavailable():
    conn = MagicMock()
    conn.execute.side_effect = OperationalError("SELECT", {}, Exception("refused"))
    with pytest.raises(UpstreamUnavailable):
        _store().nearest_chunks(conn, [0.0])


def test_driver_error_after_deadline_is_deadline():
    clock_t = [0.0]
    budget = RequestBudget(1.0, clock=lambda: clock_t[0])
    conn = MagicMock()

    def _slow(*args, **kwargs):
        clock_t[0] = 2.0
        raise OperationalError("SELECT", {}, Exception("canceling statement due to statement timeout"))

    conn.execute.side_effect = _slow
    with pytest.raises(DeadlineExceeded):
        _store().nearest_chunks(conn, [0.0], budget=budget)


@pytest.mark.parametrize(
    "dsn,expected",
    [
        ("postgres://u:p@db/x", "postgresql+psycopg://u:p@db/x"),
        ("postgresql://u:p@db/x", "postgresql+psycopg://u:p@db/x"),
        ("postgresql+psycopg://u:p@db/x", "postgresql+psycopg://u:p@db/x"),
    ],
)
def test_sqlalchemy_url_uses_psycopg(dsn, expected):
    assert sqlalchemy_url(dsn) == expected
