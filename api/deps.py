"""
Shared FastAPI dependencies: the session store, the agent runner and the
session orchestrator.

All are process-wide singletons. Tests replace them through
``app.dependency_overrides``.
"""

from __future__ import annotations

from functools import lru_cache

from db.store import SessionStore
from knowledge_base.embeddings import Icd10Reference
from orchestrator.graph import LangGraphAgentRunner
from orchestrator.session_orchestrator import SessionOrchestrator


@lru_cache(maxsize=1)
def get_store() -> SessionStore:
    return SessionStore()


@lru_cache(maxsize=1)
def get_runner() -> LangGraphAgentRunner:
    return LangGraphAgentRunner()


@lru_cache(maxsize=1)
def get_orchestrator() -> SessionOrchestrator:
    return SessionOrchestrator(
        store=get_store(),
        runner=get_runner(),
        reference=Icd10Reference(),
    )
