from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from ragchat.api.dependencies import get_session_store, get_vector_store
from ragchat.api.schemas import SessionDetailResponse, SessionListResponse, SessionOut, StoredMessageOut
from ragchat.indexing.pgvector_store import PGVectorStore
from ragchat.storage.session_store import SessionStore

router = APIRouter(prefix="/api", tags=["sessions"])


@router.get("/sessions", response_model=SessionListResponse)
def list_sessions(
    store: PGVectorStore = Depends(get_vector_store),
    sessions: SessionStore = Depends(get_session_store),
) -> SessionListResponse:
    with store.connect() as conn:
        rows = sessions.list_sessions(conn)
    return SessionListResponse(sessions=[SessionOut.from_summary(s) for s in rows])


@router.delete("/sessions")
def delete_sessions(
    session_id: Optional[str] = Query(None, alias="sessionId"),
    store: PGVectorStore = Depends(get_vector_store),
    sessions: SessionStore = Depends(get_session_store),
):
    with store.connect() as conn:
        sessions.delete_sessions(conn, session_id)
    return {"ok": True}


@router.get("/session", response_model=SessionDetailResponse)
def get_session(
    session_id: Optional[str] = Query(None, alias="sessionId"),
    store: PGVectorStore = Depends(get_vector_store),
    sessions: SessionStore = Depends(get_session_store),
):
    if not session_id:
        return JSONResponse(status_code=400, content={"error": "sessionId is required"})

    with store.connect() as conn:
        loaded = sessions.load_session(conn, session_id)
    if loaded is None:
        return JSONResponse(status_code=404, content={"error": "Session not found"})

    session, messages = loaded
    return SessionDetailResponse(
        session=SessionOut.from_summary(session),
        messages=[StoredMessageOut.from_message(m) for m in messages],
    )
