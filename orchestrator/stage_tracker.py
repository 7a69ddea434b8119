"""
Pipeline stage tracker: a monotonic 1..5 progress indicator for analysis turns.

    1 Extracting diagnoses   2 Assigning codes   3 Building claim
    4 Validating rules       5 Complete

Stages advance from two declarative tables (tool starts and applied claim
mutations). Stage 5 is only ever set by the session orchestrator when the turn
finishes successfully. When the tool catalogue changes, update the tables here.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

logger = logging.getLogger(__name__)

FIRST_STAGE = 1
COMPLETE_STAGE = 5

STAGE_LABELS: dict[int, str] = {
    1: "Extracting diagnoses...",
    2: "Assigning codes...",
    3: "Building claim...",
    4: "Validating rules...",
    5: "Complete",
}

# tool name -> stage reached when that tool starts
TOOL_STAGE_TRIGGERS: dict[str, int] = {
    "search_icd10": 2,
    "lookup_icd10": 2,
    "check_age_sex": 4,
}

# mutation action -> stage reached once that mutation is applied
MUTATION_STAGE_TRIGGERS: dict[str, int] = {
    "set": 3,
    "add_finding": 4,
    "set_risk_score": 4,
}

StageListener = Callable[[int, str], None]


class StageTracker:
    def __init__(self, on_stage: Optional[StageListener] = None) -> None:
        self._on_stage = on_stage
        self.stage = 0

    def advance(self, stage: int) -> bool:
        """Move forward to ``stage``. Returns False (and does nothing) otherwise."""
        if stage <= self.stage or stage > COMPLETE_STAGE:
            return False
        self.stage = stage
        logger.debug("stage -> %d (%s)", stage, STAGE_LABELS[stage])
        if self._on_stage is not None:
            self._on_stage(stage, STAGE_LABELS[stage])
        return True

    def observe_tool_start(self, tool_name: str) -> bool:
        stage = TOOL_STAGE_TRIGGERS.get(tool_name)
        return self.advance(stage) if stage is not None else False

    def observe_mutation(self, action: str) -> bool:
        stage = MUTATION_STAGE_TRIGGERS.get(action)
        return self.advance(stage) if stage is not None else False
