from __future__ import annotations

from typing import List, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from ragchat.core.deadline import RequestBudget
from ragchat.core.errors import DeadlineExceeded, UpstreamUnavailable
from ragchat.core.types import Candidate, Chunk


_NEAREST_SQL = text("""
SELECT
  c.id, c.document_id, c.content, c.heading, c.chunk_index,
  d.title, d.slug, d.source,
  (c.embedding <-> CAST(:q AS vector)) AS distance
FROM chunks c
JOIN documents d ON c.document_id = d.id
ORDER BY c.embedding <-> CAST(:q AS vector)
LIMIT :k;
""")


def sqlalchemy_url(dsn: str) -> str:
    """Point bare postgres URLs at the psycopg 3 driver."""
    for prefix in ("postgres://", "postgresql://"):
        if dsn.startswith(prefix):
            return "postgresql+psycopg://" + dsn[len(prefix):]
    return dsn


class PGVectorStore:
    def __init__(self, dsn: str, pool_size: int = 5):
        self.engine: Engine = create_engine(
            sqlalchemy_url(dsn), pool_pre_ping=True, pool_size=pool_size, future=True
        )

    @classmethod
    def from_engine(cls, engine: Engine) -> "PGVectorStore":
        store = cls.__new__(cls)
        store.engine = engine
        return store

    def connect(self) -> Connection:
        """Check out a pooled connection; use as a context manager so it is always returned."""
        return self.engine.connect()

    def nearest_chunks(
        self,
        conn: Connection,
        query_embedding: List[float],
        limit: int = 10,
        budget: Optional[RequestBudget] = None,
    ) -> List[Candidate]:
        """
        Returns up to `limit` candidates sorted by L2 distance ascending,
        joined to their parent document's title/slug/source.
        """
        params = {"q": _to_pgvector_literal(query_embedding), "k": limit}

        try:
            with conn.begin():
                if budget is not None:
                    # is_local=true: the timeout dies with this transaction
                    conn.execute(
                        text("SELECT set_config('statement_timeout', :ms, true)"),
                        {"ms": str(budget.remaining_ms())},
                    )
                rows = conn.execute(_NEAREST_SQL, params).mappings().all()
        except SQLAlchemyError as e:
            if budget is not None and budget.expired:
                raise DeadlineExceeded("vector search exceeded the request deadline") from e
            raise UpstreamUnavailable(f"vector search failed: {e.__class__.__name__}") from e

        out: List[Candidate] = []
        for r in rows:
            chunk = Chunk(
                chunk_id=r["id"],
                document_id=r["document_id"],
                content=r["content"],
                heading=r["heading"],
                chunk_index=r["chunk_index"],
                title=r["title"],
                slug=r["slug"],
                source=r["source"],
            )
            out.append(Candidate(chunk=chunk, distance=float(r["distance"] or 0.0)))
        return out


def _to_pgvector_literal(vec: List[float]) -> str:
    # pgvector accepts array-like string: '[1,2,3]'
    return "[" + ",".join(f"{x:.8f}" for x in vec) + "]"
