"""
Agent API routes. Each returns a server-sent event stream of turn events.

POST /api/analyze         — analyse pasted clinical notes and build a claim
POST /api/analyze/upload  — same, from an uploaded document (PDF / DOCX / TXT)
POST /api/chat            — follow-up turn on an existing session
"""

from __future__ import annotations

import asyncio
import logging
from typing import Literal, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from fastapi.responses import StreamingResponse

from agents.document_text import UnsupportedDocumentError, extract_text
from api.auth import get_user_id
from api.deps import get_orchestrator
from api.sse import sse_response
from claims.models import CamelModel
from orchestrator.session_orchestrator import SessionOrchestrator

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["agent"])


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------


class PatientHints(CamelModel):
    sex: Optional[Literal["M", "F"]] = None
    age: Optional[int] = None


class AnalyzeRequest(CamelModel):
    clinical_notes: Optional[str] = None
    patient: Optional[PatientHints] = None


class ChatRequest(CamelModel):
    session_id: Optional[str] = None
    message: Optional[str] = None


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.post("/analyze")
async def analyze(
    body: AnalyzeRequest,
    user_id: str = Depends(get_user_id),
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
) -> StreamingResponse:
    """Analyse clinical notes; streams stage, narration, tool and claim events."""
    if not body.clinical_notes or not body.clinical_notes.strip():
        raise HTTPException(status_code=400, detail="clinicalNotes is required")

    patient = body.patient.model_dump(exclude_none=True) if body.patient else None
    logger.info("Analysis requested by %s (%d chars)", user_id, len(body.clinical_notes))
    return sse_response(orchestrator.start_analysis(body.clinical_notes, patient, user_id))


@router.post("/analyze/upload")
async def analyze_upload(
    file: UploadFile = File(...),
    sex: Optional[Literal["M", "F"]] = Form(None),
    age: Optional[int] = Form(None),
    user_id: str = Depends(get_user_id),
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
) -> StreamingResponse:
    """Extract text from an uploaded clinical document, then analyse it."""
    data = await file.read()
    try:
        text = await asyncio.to_thread(extract_text, file.filename or "", data)
    except UnsupportedDocumentError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if not text:
        raise HTTPException(status_code=422, detail="No text could be extracted from the document.")

    patient = {k: v for k, v in (("sex", sex), ("age", age)) if v is not None} or None
    logger.info("Upload analysis requested by %s: %s (%d chars)", user_id, file.filename, len(text))
    return sse_response(orchestrator.start_analysis(text, patient, user_id))


@router.post("/chat")
async def chat(
    body: ChatRequest,
    user_id: str = Depends(get_user_id),
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
) -> StreamingResponse:
    """Continue a session; streams narration, tool and claim events."""
    if not body.session_id or not body.message or not body.message.strip():
        raise HTTPException(status_code=400, detail="sessionId and message are required")

    return sse_response(orchestrator.continue_chat(body.session_id, body.message, user_id))
