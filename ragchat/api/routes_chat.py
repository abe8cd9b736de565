from __future__ import annotations

import asyncio
import threading

from fastapi import APIRouter, Depends, Request
from starlette.concurrency import run_in_threadpool

from ragchat.api.dependencies import get_pipeline
from ragchat.api.schemas import ChatRequest, ChatResponse, ErrorResponse
from ragchat.pipeline.chat_pipeline import ChatPipeline

router = APIRouter(prefix="/api", tags=["chat"])

DISCONNECT_POLL_SECONDS = 0.5


@router.post(
    "/chat",
    response_model=ChatResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
async def chat(
    body: ChatRequest,
    request: Request,
    pipeline: ChatPipeline = Depends(get_pipeline),
) -> ChatResponse:
    cancel = threading.Event()
    # The pipeline is blocking I/O; run it off the event loop and watch the client meanwhile.
    worker = asyncio.ensure_future(
        run_in_threadpool(
            pipeline.answer,
            body.question,
            session_id=body.session_id,
            new_session=body.new_session,
            cancel_event=cancel,
        )
    )
    while True:
        done, _ = await asyncio.wait({worker}, timeout=DISCONNECT_POLL_SECONDS)
        if done:
            break
        if not cancel.is_set() and await request.is_disconnected():
            cancel.set()

    # Pipeline errors re-raise here and are mapped by the app's exception handlers
    return ChatResponse.from_result(worker.result())
