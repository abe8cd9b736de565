from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import text
from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError

from ragchat.core.errors import PersistenceFailure
from ragchat.core.types import AssistantMessage, Citation, SessionSummary, StoredMessage
from ragchat.generation.citations import canonical_url, normalize_snippet

logger = logging.getLogger(__name__)

DEFAULT_SESSION_TITLE = "New chat session"
SESSION_TITLE_CHARS = 80


def _is_uuid(value: str) -> bool:
    try:
        uuid.UUID(str(value))
    except ValueError:
        return False
    return True


class SessionStore:
    """Append-only chat log: sessions, their messages, and message citations."""

    def __init__(self, citation_base_url: str, excerpt_chars: int = 280):
        self.citation_base_url = citation_base_url
        self.excerpt_chars = excerpt_chars

    # --- writes ---

    def _create_session(self, conn: Connection, question: str, now: datetime) -> str:
        title = question[:SESSION_TITLE_CHARS] or DEFAULT_SESSION_TITLE
        row = conn.execute(
            text("""
            INSERT INTO chat_sessions (title, created_at, updated_at)
            VALUES (:title, :now, :now)
            RETURNING id;
            """),
            {"title": title, "now": now},
        ).scalar_one()
        logger.info(f"Created chat session {row}")
        return str(row)

    def resolve_session(
        self,
        conn: Connection,
        session_id: Optional[str],
        new_session: bool,
        question: str,
        now: datetime,
    ) -> str:
        """Reuse an existing session, or start one (explicit request, no id, unknown id)."""
        if new_session or not session_id or not _is_uuid(session_id):
            return self._create_session(conn, question, now)

        exists = conn.execute(
            text("SELECT 1 FROM chat_sessions WHERE id = CAST(:id AS uuid)"),
            {"id": session_id},
        ).scalar()
        if exists is None:
            return self._create_session(conn, question, now)
        return session_id

    def save_exchange(
        self,
        conn: Connection,
        session_id: Optional[str],
        new_session: bool,
        question: str,
        asked_at: datetime,
        answer: AssistantMessage,
        citations: Sequence[Citation],
    ) -> str:
        """
        Writes user question + assistant answer + citation links in one
        transaction and returns the session id used.
        """
        try:
            with conn.begin():
                sid = self.resolve_session(conn, session_id, new_session, question, asked_at)

                insert_msg = text("""
                INSERT INTO messages (id, session_id, role, content, created_at)
                VALUES (CAST(:id AS uuid), CAST(:session_id AS uuid), CAST(:role AS message_role), :content, :created_at);
                """)
                conn.execute(
                    insert_msg,
                    {"id": str(uuid.uuid4()), "session_id": sid, "role": "user",
                     "content": question, "created_at": asked_at},
                )
                conn.execute(
                    insert_msg,
                    {"id": answer.id, "session_id": sid, "role": "assistant",
                     "content": answer.content, "created_at": answer.timestamp},
                )

                if citations:
                    conn.execute(
                        text("""
                        INSERT INTO message_citations (message_id, chunk_id, position, relevance_score)
                        VALUES (CAST(:message_id AS uuid), :chunk_id, :position, :score);
                        """),
                        [
                            {"message_id": answer.id, "chunk_id": c.id, "position": i, "score": c.relevance_score}
                            for i, c in enumerate(citations)
                        ],
                    )

                conn.execute(
                    text("UPDATE chat_sessions SET updated_at = :now WHERE id = CAST(:id AS uuid)"),
                    {"now": answer.timestamp, "id": sid},
                )
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"could not persist exchange: {e.__class__.__name__}") from e
        return sid

    def delete_sessions(self, conn: Connection, session_id: Optional[str] = None) -> None:
        with conn.begin():
            if session_id:
                if not _is_uuid(session_id):
                    return
                conn.execute(
                    text("DELETE FROM chat_sessions WHERE id = CAST(:id AS uuid)"),
                    {"id": session_id},
                )
            else:
                conn.execute(text("DELETE FROM chat_sessions"))

    # --- reads ---

    def list_sessions(self, conn: Connection) -> List[SessionSummary]:
        rows = conn.execute(
            text("""
            SELECT id, title, created_at, updated_at
            FROM chat_sessions
            ORDER BY updated_at DESC;
            """)
        ).mappings().all()
        return [
            SessionSummary(id=str(r["id"]), title=r["title"], created_at=r["created_at"], updated_at=r["updated_at"])
            for r in rows
        ]

    def load_session(
        self, conn: Connection, session_id: str
    ) -> Optional[Tuple[SessionSummary, List[StoredMessage]]]:
        if not _is_uuid(session_id):
            return None

        srow = conn.execute(
            text("SELECT id, title, created_at, updated_at FROM chat_sessions WHERE id = CAST(:id AS uuid)"),
            {"id": session_id},
        ).mappings().first()
        if srow is None:
            return None

        rows = conn.execute(
            text("""
            SELECT m.id AS message_id, m.role, m.content, m.created_at,
                   mc.chunk_id, mc.relevance_score,
                   c.content AS chunk_content, d.title, d.slug
            FROM messages m
            LEFT JOIN message_citations mc ON mc.message_id = m.id
            LEFT JOIN chunks c ON c.id = mc.chunk_id
            LEFT JOIN documents d ON d.id = c.document_id
            WHERE m.session_id = CAST(:id AS uuid)
            ORDER BY m.created_at ASC, m.role DESC, mc.position ASC;
            """),
            {"id": session_id},
        ).mappings().all()

        # Collapse the join back into one entry per message, keeping order
        by_message: Dict[str, dict] = {}
        for r in rows:
            mid = str(r["message_id"])
            acc = by_message.get(mid)
            if acc is None:
                acc = {"role": str(r["role"]), "content": r["content"], "created_at": r["created_at"], "citations": []}
                by_message[mid] = acc
            if r["chunk_id"] and r["slug"] and r["title"]:
                acc["citations"].append(
                    Citation(
                        id=r["chunk_id"],
                        url=canonical_url(r["slug"], self.citation_base_url),
                        article_title=r["title"],
                        excerpt=normalize_snippet(r["chunk_content"] or "", self.excerpt_chars),
                        trust_level="direct",
                        relevance_score=float(r["relevance_score"]) if r["relevance_score"] is not None else 0.0,
                    )
                )

        messages = [
            StoredMessage(id=mid, role=m["role"], content=m["content"], created_at=m["created_at"], citations=m["citations"])
            for mid, m in by_message.items()
        ]
        session = SessionSummary(
            id=str(srow["id"]), title=srow["title"], created_at=srow["created_at"], updated_at=srow["updated_at"]
        )
        return session, messages
