"""
Durable session store: sessions, their messages and the audit trail.

All methods are synchronous and open their own DB session; async callers go
through ``asyncio.to_thread``. Results are plain dicts so nothing ORM-bound
escapes a closed session.
"""

from __future__ import annotations

import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker

from db.database import SessionLocal
from db.models import AuditLog, ClaimSession, Message

logger = logging.getLogger(__name__)

_PREVIEW_CHARS = 60
_KEEP = object()  # sentinel: leave a column unchanged

# A ``processing`` session older than this has lost its turn.
STALE_SESSION_AGE = timedelta(minutes=int(os.getenv("STALE_SESSION_MINUTES", "30")))


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _session_dict(row: ClaimSession) -> dict[str, Any]:
    return {
        "id": row.id,
        "user_id": row.user_id,
        "clinical_notes": row.clinical_notes,
        "claim": row.claim,
        "highlights": row.highlights,
        "agent_session_id": row.agent_session_id,
        "status": row.status,
        "created_at": _iso(row.created_at),
        "updated_at": _iso(row.updated_at),
    }


def _message_dict(row: Message) -> dict[str, Any]:
    return {
        "id": row.id,
        "session_id": row.session_id,
        "role": row.role,
        "content": row.content,
        "suggested_prompts": row.suggested_prompts,
        "claim_change": row.claim_change,
        "created_at": _iso(row.created_at),
    }


class SessionNotFoundError(LookupError):
    pass


class SessionStore:
    def __init__(self, session_factory: sessionmaker = SessionLocal) -> None:
        self._session_factory = session_factory

    def _audit(self, db: Session, session_id: str, event: str, detail: Optional[str] = None) -> None:
        db.add(AuditLog(session_id=session_id, event=event, detail=detail, created_at=_utcnow()))

    # ---- sessions ----------------------------------------------------

    def create_session(self, user_id: str, clinical_notes: str) -> dict[str, Any]:
        """Insert a new session in ``processing`` status."""
        now = _utcnow()
        with self._session_factory() as db:
            row = ClaimSession(
                user_id=user_id,
                clinical_notes=clinical_notes,
                status="processing",
                created_at=now,
                updated_at=now,
            )
            db.add(row)
            db.flush()
            self._audit(db, row.id, "session_created")
            db.commit()
            logger.info("Session created: %s (user %s)", row.id, user_id)
            return _session_dict(row)

    def get_session(self, session_id: str) -> Optional[dict[str, Any]]:
        with self._session_factory() as db:
            row = db.get(ClaimSession, session_id)
            return _session_dict(row) if row is not None else None

    def complete_turn(
        self,
        session_id: str,
        claim: Optional[dict[str, Any]],
        agent_session_id: Optional[str],
        messages: list[dict[str, Any]],
        highlights: Any = _KEEP,
    ) -> dict[str, Any]:
        """
        Persist the outcome of a successful turn in one transaction: replace the
        claim (and highlights, when given) and the agent handle, mark the session
        completed and append the turn's messages.
        """
        with self._session_factory() as db:
            row = db.get(ClaimSession, session_id)
            if row is None:
                raise SessionNotFoundError(session_id)

            row.claim = claim
            if highlights is not _KEEP:
                row.highlights = highlights
            if agent_session_id:
                row.agent_session_id = agent_session_id
            row.status = "completed"
            row.updated_at = _utcnow()

            for message in messages:
                db.add(
                    Message(
                        session_id=session_id,
                        role=message["role"],
                        content=message.get("content") or "",
                        suggested_prompts=message.get("suggested_prompts"),
                        claim_change=message.get("claim_change"),
                        created_at=_utcnow(),
                    )
                )
            self._audit(db, session_id, "turn_completed", f"{len(messages)} messages")
            db.commit()
            return _session_dict(row)

    def mark_error(self, session_id: str, detail: Optional[str] = None) -> None:
        with self._session_factory() as db:
            row = db.get(ClaimSession, session_id)
            if row is None:
                logger.warning("mark_error: session %s not found", session_id)
                return
            row.status = "error"
            row.updated_at = _utcnow()
            self._audit(db, session_id, "turn_failed", detail)
            db.commit()

    def expire_stale_sessions(self, max_age: timedelta = STALE_SESSION_AGE, user_id: Optional[str] = None) -> int:
        """
        Mark ``processing`` sessions untouched for longer than ``max_age`` as
        errored. A turn whose caller went away never writes a result, so this is
        what moves its session out of ``processing``. Returns how many changed.
        """
        stmt = select(ClaimSession).where(
            ClaimSession.status == "processing",
            ClaimSession.updated_at < _utcnow() - max_age,
        )
        if user_id is not None:
            stmt = stmt.where(ClaimSession.user_id == user_id)
        with self._session_factory() as db:
            rows = list(db.scalars(stmt))
            for row in rows:
                row.status = "error"
                row.updated_at = _utcnow()
                self._audit(db, row.id, "turn_abandoned", "No result before the session went stale")
            db.commit()
            if rows:
                logger.warning("Expired %d stale session(s): %s", len(rows), ", ".join(r.id for r in rows))
            return len(rows)

    def list_sessions(self, user_id: str, limit: int = 50) -> list[dict[str, Any]]:
        """The caller's completed sessions, newest first."""
        counts = (
            select(Message.session_id, func.count(Message.id).label("n"))
            .group_by(Message.session_id)
            .subquery()
        )
        stmt = (
            select(ClaimSession, func.coalesce(counts.c.n, 0))
            .outerjoin(counts, counts.c.session_id == ClaimSession.id)
            .where(ClaimSession.user_id == user_id, ClaimSession.status == "completed")
            .order_by(ClaimSession.created_at.desc())
            .limit(limit)
        )
        with self._session_factory() as db:
            items = []
            for row, message_count in db.execute(stmt).all():
                claim = row.claim or {}
                items.append(
                    {
                        "id": row.id,
                        "created_at": _iso(row.created_at),
                        "clinical_notes_preview": (row.clinical_notes or "")[:_PREVIEW_CHARS],
                        "risk_score": claim.get("riskScore"),
                        "message_count": message_count,
                    }
                )
            return items

    def list_messages(self, session_id: str) -> list[dict[str, Any]]:
        stmt = select(Message).where(Message.session_id == session_id).order_by(Message.id)
        with self._session_factory() as db:
            return [_message_dict(row) for row in db.scalars(stmt)]

    def delete_session(self, session_id: str, user_id: str) -> bool:
        """Delete a session owned by ``user_id`` with its messages. False if absent."""
        with self._session_factory() as db:
            row = db.get(ClaimSession, session_id)
            if row is None or row.user_id != user_id:
                return False
            db.delete(row)
            db.commit()
            logger.info("Session deleted: %s", session_id)
            return True
