"""
Pytest fixtures shared across the suite: sample claims, an in-memory session
store and a fake ICD-10 reference. No test touches the network.
"""

import copy

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from claims.models import Claim
from db.database import init_db
from db.store import SessionStore
from fakes import FakeReference

_CLAIM = {
    "claimId": "FC-20240315-001",
    "dateOfService": "2024-03-15",
    "patient": {"sex": "M", "age": 45},
    "lineItems": [
        {
            "lineNumber": 1,
            "cpt": "99214",
            "description": "Office visit, established patient, moderate MDM",
            "modifiers": [],
            "icd10": ["M54.50"],
            "units": 1,
            "codingRationale": "Moderate MDM documented.",
            "sources": [],
        },
        {
            "lineNumber": 2,
            "cpt": "72070",
            "description": "X-ray thoracic spine, 2 views",
            "modifiers": [],
            "icd10": ["M54.50"],
            "units": 1,
            "codingRationale": "Two-view film ordered and read.",
            "sources": [],
        },
    ],
    "findings": [],
}


@pytest.fixture
def claim_payload():
    """camelCase claim as the agent would send it to update_claim(set)."""
    return copy.deepcopy(_CLAIM)


@pytest.fixture
def sample_claim(claim_payload):
    return Claim.model_validate(claim_payload)


@pytest.fixture
def finding_payload():
    return {
        "id": "f1",
        "severity": "warning",
        "title": "Modifier 25 may be required",
        "description": "E/M billed with a procedure on the same date.",
        "recommendation": "Append modifier 25 to line 1.",
        "relatedLineNumber": 2,
    }


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def store(engine):
    return SessionStore(sessionmaker(autocommit=False, autoflush=False, bind=engine))


@pytest.fixture
def reference():
    return FakeReference()
