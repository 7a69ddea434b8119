"""
FirstClaim billing agent — FastAPI application.

Startup sequence:
  1. Load .env
  2. Create DB tables
  3. Populate the ICD-10-CM ChromaDB collection if empty (local sentence-transformers, no OpenAI)
  4. Mark sessions left in ``processing`` by a dead turn as errored
  5. Warn about missing credentials (auth secret, OpenAI key)

Shutdown closes the agent checkpoint connection.

Routers: /api/analyze*, /api/chat (SSE turn streams) and /api/sessions (history).
"""

from __future__ import annotations

import logging
import os

from dotenv import load_dotenv

load_dotenv()

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api import auth
from api.deps import get_runner, get_store
from api.routes import agent as agent_router
from api.routes import sessions as sessions_router
from db.database import DATABASE_URL, init_db
from knowledge_base.embeddings import EMBEDDING_MODEL, ensure_collections
from orchestrator.graph import AGENT_MODEL
from orchestrator.session_orchestrator import ANALYSIS_MAX_TURNS, CHAT_MAX_TURNS

logger = logging.getLogger(__name__)
logging.basicConfig(level=logging.INFO)

# Comma separated; "*" allows any origin.
ALLOWED_ORIGINS = [
    o.strip() for o in os.getenv("ALLOWED_ORIGINS", "*").split(",") if o.strip()
]

app = FastAPI(
    title="FirstClaim Billing Agent",
    description="Clinical notes to validated CMS-1500 claims, streamed live from a coding agent.",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if "*" in ALLOWED_ORIGINS else ALLOWED_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def startup_event() -> None:
    logger.info("FirstClaim startup: database %s", DATABASE_URL.split("://", 1)[0])
    init_db()

    logger.info("FirstClaim startup: ICD-10 index (%s)", EMBEDDING_MODEL)
    ensure_collections()

    get_store().expire_stale_sessions()

    if not auth.AUTH_JWT_SECRET:
        logger.warning("AUTH_JWT_SECRET is not set; every API request will be rejected with 401")
    if not os.getenv("OPENAI_API_KEY"):
        logger.warning("OPENAI_API_KEY is not set; agent turns will fail")

    logger.info(
        "FirstClaim ready: model=%s analysis_max_turns=%d chat_max_turns=%d",
        AGENT_MODEL, ANALYSIS_MAX_TURNS, CHAT_MAX_TURNS,
    )


@app.on_event("shutdown")
async def shutdown_event() -> None:
    await get_runner().aclose()


@app.get("/health", tags=["meta"])
def health() -> dict:
    """Liveness check. Makes no embedding, LLM or database calls."""
    langsmith_enabled: bool = (
        os.getenv("LANGSMITH_TRACING", "").lower() == "true"
        and bool(os.getenv("LANGSMITH_API_KEY", "").strip())
    )
    return {
        "status": "ok",
        "embedding_model": EMBEDDING_MODEL,
        "llm_model": AGENT_MODEL,
        "auth_configured": bool(auth.AUTH_JWT_SECRET),
        "langsmith_enabled": langsmith_enabled,
    }


app.include_router(agent_router.router)
app.include_router(sessions_router.router)
