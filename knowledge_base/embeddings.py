"""
ICD-10-CM reference index: ChromaDB with HuggingFace sentence-transformers embeddings.

Embedding model: pritamdeka/S-PubMedBert-MS-MARCO (biomedical domain).
Loaded via chromadb.utils.embedding_functions.SentenceTransformerEmbeddingFunction,
runs locally with no API key.

Source data is the CMS ICD-10-CM order file (fixed width):
  ORDER(5) SPACE CODE(7) SPACE BILLABLE(1) SPACE SHORT_DESC(60) SPACE LONG_DESC

Collection:
  - icd10_codes : id = code without dot; document = '{code_dot}: {long_desc}';
                  metadata = {code, code_dot, short_desc, long_desc, billable}

Public API used by agents/tools.py (through Icd10Reference):
  search_icd10(query, n_results=10, billable_only=True)
  lookup_icd10(code)
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional

import chromadb
from chromadb.utils.embedding_functions import SentenceTransformerEmbeddingFunction

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Configuration (reads from environment / .env)
# ---------------------------------------------------------------------------
_REPO_ROOT = Path(__file__).resolve().parent.parent
_DEFAULT_PERSIST_DIR = str(_REPO_ROOT / "chroma_data")
_DEFAULT_EMBEDDING_MODEL = "pritamdeka/S-PubMedBert-MS-MARCO"
_DEFAULT_ORDER_FILE = str(_REPO_ROOT / "knowledge_base" / "icd10cm-order.txt")

CHROMA_PERSIST_DIR = os.getenv("CHROMA_PERSIST_DIR", _DEFAULT_PERSIST_DIR)
EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", _DEFAULT_EMBEDDING_MODEL)
ICD10_ORDER_FILE = os.getenv("ICD10_ORDER_FILE", _DEFAULT_ORDER_FILE)

ICD10_COLLECTION = "icd10_codes"

# ---------------------------------------------------------------------------
# Singleton ChromaDB client + embedding function
# ---------------------------------------------------------------------------


@lru_cache(maxsize=1)
def _embedding_fn() -> SentenceTransformerEmbeddingFunction:
    logger.info("Loading embedding model: %s", EMBEDDING_MODEL)
    return SentenceTransformerEmbeddingFunction(model_name=EMBEDDING_MODEL)


@lru_cache(maxsize=1)
def _chroma_client() -> chromadb.PersistentClient:
    Path(CHROMA_PERSIST_DIR).mkdir(parents=True, exist_ok=True)
    logger.info("ChromaDB persist dir: %s", CHROMA_PERSIST_DIR)
    return chromadb.PersistentClient(path=CHROMA_PERSIST_DIR)


def _get_collection() -> chromadb.Collection:
    return _chroma_client().get_or_create_collection(
        name=ICD10_COLLECTION,
        embedding_function=_embedding_fn(),
        metadata={"hnsw:space": "cosine"},
    )


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def normalize_code(code: str) -> str:
    """'m54.31' -> 'M5431'."""
    return code.replace(".", "").strip().upper()


def dotted(code: str) -> str:
    """'M5431' -> 'M54.31'. Three-character categories have no dot."""
    return code if len(code) <= 3 else f"{code[:3]}.{code[3:]}"


def parse_order_line(line: str) -> Optional[dict[str, Any]]:
    """Parse one fixed-width line of the CMS order file, or None if malformed."""
    if len(line) < 78:
        return None
    code = line[6:13].strip()
    billable_flag = line[14:15]
    short_desc = line[16:77].strip()
    long_desc = line[77:].strip()
    if not code or not short_desc:
        return None
    return {
        "code": code,
        "code_dot": dotted(code),
        "short_desc": short_desc,
        "long_desc": long_desc or short_desc,
        "billable": billable_flag == "1",
    }


# ---------------------------------------------------------------------------
# Ingestion (idempotent: skipped when already populated)
# ---------------------------------------------------------------------------

_BATCH_SIZE = 512  # safe upper limit for ChromaDB upsert


def _ingest_icd10(order_file: str = ICD10_ORDER_FILE) -> None:
    collection = _get_collection()
    if collection.count() > 0:
        logger.debug("ICD-10 collection already populated (%d docs).", collection.count())
        return

    path = Path(order_file)
    if not path.exists():
        logger.warning("ICD-10 order file not found at %s; code search will return nothing.", path)
        return

    logger.info("Ingesting ICD-10-CM codes from %s …", path)
    # Deduplicate by code, keep last occurrence
    rows: dict[str, dict[str, Any]] = {}
    with open(path, encoding="utf-8") as f:
        for line in f:
            row = parse_order_line(line.rstrip("\n"))
            if row is not None:
                rows[row["code"]] = row

    ids, docs, metas = [], [], []
    for code, row in rows.items():
        ids.append(code)
        docs.append(f"{row['code_dot']}: {row['long_desc']}")
        metas.append(row)
        if len(ids) >= _BATCH_SIZE:
            collection.upsert(ids=ids, documents=docs, metadatas=metas)
            ids, docs, metas = [], [], []
    if ids:
        collection.upsert(ids=ids, documents=docs, metadatas=metas)

    logger.info("ICD-10 ingestion complete — %d docs.", collection.count())


def ensure_collections() -> None:
    """Ingest the ICD-10-CM order file into ChromaDB if not already present."""
    _ingest_icd10()


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


def _row(meta: dict[str, Any], score: Optional[float] = None) -> dict[str, Any]:
    row = {
        "code": meta.get("code", ""),
        "code_dot": meta.get("code_dot", ""),
        "short_desc": meta.get("short_desc", ""),
        "long_desc": meta.get("long_desc", ""),
        "billable": bool(meta.get("billable", False)),
    }
    if score is not None:
        row["score"] = score
    return row


def search_icd10(query: str, n_results: int = 10, billable_only: bool = True) -> list[dict[str, Any]]:
    """
    Semantic search over ICD-10-CM descriptions.

    Falls back to a case-sensitive substring match over the stored documents
    when the semantic query returns nothing (e.g. an empty billable subset).

    Returns up to n_results dicts: {code, code_dot, short_desc, long_desc, billable, score?}.
    Raises whatever ChromaDB raises; callers decide how to report it.
    """
    if not query or not query.strip():
        return []

    collection = _get_collection()
    total = collection.count()
    if total == 0:
        return []

    where = {"billable": True} if billable_only else None
    raw = collection.query(
        query_texts=[query],
        n_results=min(n_results, total),
        where=where,
    )
    metas = (raw.get("metadatas") or [[]])[0]
    distances = (raw.get("distances") or [[]])[0]
    results = [
        # cosine distance: 0 = identical → similarity score
        _row(meta, round(1.0 - float(dist), 4))
        for meta, dist in zip(metas, distances)
    ]
    if results:
        return results

    fallback = collection.get(
        where=where,
        where_document={"$contains": query.strip()},
        limit=n_results,
    )
    return [_row(meta) for meta in fallback.get("metadatas") or []]


def lookup_icd10(code: str) -> Optional[dict[str, Any]]:
    """Exact lookup by code, with or without the dot."""
    normalized = normalize_code(code)
    if not normalized:
        return None
    raw = _get_collection().get(ids=[normalized])
    metas = raw.get("metadatas") or []
    return _row(metas[0]) if metas else None


class Icd10Reference:
    """Read-only reference-data collaborator handed to the tool layer."""

    def search(self, query: str, limit: int = 10, billable_only: bool = True) -> list[dict[str, Any]]:
        return search_icd10(query, n_results=limit, billable_only=billable_only)

    def lookup(self, code: str) -> Optional[dict[str, Any]]:
        return lookup_icd10(code)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(message)s")

    print("Starting ICD-10-CM ingestion...")
    print(f"   Persist dir : {CHROMA_PERSIST_DIR}")
    print(f"   Model       : {EMBEDDING_MODEL}")
    print(f"   Order file  : {ICD10_ORDER_FILE}")
    _ingest_icd10()
    print(f"{_get_collection().count()} codes in {ICD10_COLLECTION}")

    print("Test search: 'low back pain'")
    for r in search_icd10("low back pain", n_results=3):
        print(f"   {r['code_dot']} | {r['long_desc']} | billable={r['billable']}")
