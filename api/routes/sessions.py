"""
Session history API routes.

GET    /api/sessions       — the caller's completed sessions, newest first
GET    /api/sessions/{id}  — one session with its messages
DELETE /api/sessions/{id}  — delete a session, its messages and its agent conversation

Sessions of the caller stuck in ``processing`` past the stale age are marked
``error`` before they are read.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException

from api.auth import get_user_id
from api.deps import get_orchestrator, get_store
from claims.models import CamelModel
from db.store import SessionStore
from orchestrator.session_orchestrator import SessionOrchestrator

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/sessions", tags=["sessions"])

MAX_LISTED_SESSIONS = 50


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class SessionSummary(CamelModel):
    id: str
    created_at: Optional[str]
    clinical_notes_preview: str
    risk_score: Optional[float]
    message_count: int


class SessionMessage(CamelModel):
    id: int
    role: str
    content: str
    suggested_prompts: Optional[list[str]] = None
    claim_change: Optional[dict[str, Any]] = None
    created_at: Optional[str] = None


class SessionDetail(CamelModel):
    id: str
    created_at: Optional[str]
    updated_at: Optional[str]
    clinical_notes: str
    claim: Optional[dict[str, Any]]
    highlights: Optional[list[dict[str, Any]]]
    status: str
    messages: list[SessionMessage]


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get("", response_model=list[SessionSummary], response_model_by_alias=True)
async def list_sessions(
    user_id: str = Depends(get_user_id),
    store: SessionStore = Depends(get_store),
):
    await asyncio.to_thread(store.expire_stale_sessions, user_id=user_id)
    rows = await asyncio.to_thread(store.list_sessions, user_id, MAX_LISTED_SESSIONS)
    return [SessionSummary.model_validate(row) for row in rows]


@router.get("/{session_id}", response_model=SessionDetail, response_model_by_alias=True)
async def get_session(
    session_id: str,
    user_id: str = Depends(get_user_id),
    store: SessionStore = Depends(get_store),
):
    await asyncio.to_thread(store.expire_stale_sessions, user_id=user_id)
    session = await asyncio.to_thread(store.get_session, session_id)
    if session is None or session["user_id"] != user_id:
        raise HTTPException(status_code=404, detail="Session not found")

    messages = await asyncio.to_thread(store.list_messages, session_id)
    return SessionDetail.model_validate(
        {**session, "messages": [SessionMessage.model_validate(m) for m in messages]}
    )


@router.delete("/{session_id}")
async def delete_session(
    session_id: str,
    user_id: str = Depends(get_user_id),
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
) -> dict:
    deleted = await orchestrator.delete_session(session_id, user_id)
    if not deleted:
        logger.info("Delete refused for session %s (user %s)", session_id, user_id)
        raise HTTPException(status_code=404, detail="Session not found")
    return {"success": True}
