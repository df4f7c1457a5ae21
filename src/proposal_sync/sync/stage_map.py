"""Prolibu stage → Salesforce Opportunity stage mapping.

Pure lookup tables and functions, no I/O:
- map_stage_to_target(): normalizes a Prolibu stage and maps it to a TargetStage
- is_closed() / probability_for(): derived attributes of a target stage
- source_stages_for() / mapping_summary(): inverse lookup and introspection
  for the /webhooks/prolibu/info endpoint

The mapping is many-to-one. Exactly two target stages are terminal:
CLOSED_WON (positive) and CLOSED_LOST (negative).
"""

from __future__ import annotations

from enum import Enum
from types import MappingProxyType
from typing import Any

import structlog
from pydantic import BaseModel

from src.proposal_sync.errors import InvalidInputError, UnmappedStageError

logger = structlog.get_logger(__name__)


class TargetStage(str, Enum):
    """Salesforce Opportunity StageName picklist values."""

    PROSPECTING = "Prospecting"
    QUALIFICATION = "Qualification"
    NEEDS_ANALYSIS = "Needs Analysis"
    VALUE_PROPOSITION = "Value Proposition"
    ID_DECISION_MAKERS = "Id. Decision Makers"
    PERCEPTION_ANALYSIS = "Perception Analysis"
    PROPOSAL_PRICE_QUOTE = "Proposal/Price Quote"
    NEGOTIATION_REVIEW = "Negotiation/Review"
    CLOSED_WON = "Closed Won"
    CLOSED_LOST = "Closed Lost"


# ── Mapping Tables ──────────────────────────────────────────────────────────

# Keys are lowercase and trimmed; lookups normalize input the same way.
STAGE_MAPPING: MappingProxyType[str, TargetStage] = MappingProxyType({
    # Initial
    "lead": TargetStage.PROSPECTING,
    "qualification": TargetStage.QUALIFICATION,
    "qualified": TargetStage.QUALIFICATION,
    # Proposal development
    "analysis": TargetStage.NEEDS_ANALYSIS,
    "needs_analysis": TargetStage.NEEDS_ANALYSIS,
    "solution_design": TargetStage.VALUE_PROPOSITION,
    "proposal": TargetStage.PROPOSAL_PRICE_QUOTE,
    "proposal_draft": TargetStage.PROPOSAL_PRICE_QUOTE,
    "proposal_review": TargetStage.PROPOSAL_PRICE_QUOTE,
    # Negotiation
    "negotiation": TargetStage.NEGOTIATION_REVIEW,
    "review": TargetStage.NEGOTIATION_REVIEW,
    "final_review": TargetStage.NEGOTIATION_REVIEW,
    # Closed, positive
    "approved": TargetStage.CLOSED_WON,
    "won": TargetStage.CLOSED_WON,
    "closed_won": TargetStage.CLOSED_WON,
    "accepted": TargetStage.CLOSED_WON,
    # Closed, negative
    "rejected": TargetStage.CLOSED_LOST,
    "lost": TargetStage.CLOSED_LOST,
    "closed_lost": TargetStage.CLOSED_LOST,
    "cancelled": TargetStage.CLOSED_LOST,
    "declined": TargetStage.CLOSED_LOST,
})

VALID_TARGET_STAGES: tuple[TargetStage, ...] = tuple(TargetStage)

CLOSED_STAGES: frozenset[TargetStage] = frozenset(
    {TargetStage.CLOSED_WON, TargetStage.CLOSED_LOST}
)

# Default forecast weight (0-100) per stage.
STAGE_PROBABILITIES: MappingProxyType[TargetStage, int] = MappingProxyType({
    TargetStage.PROSPECTING: 10,
    TargetStage.QUALIFICATION: 20,
    TargetStage.NEEDS_ANALYSIS: 30,
    TargetStage.VALUE_PROPOSITION: 40,
    TargetStage.ID_DECISION_MAKERS: 50,
    TargetStage.PERCEPTION_ANALYSIS: 60,
    TargetStage.PROPOSAL_PRICE_QUOTE: 70,
    TargetStage.NEGOTIATION_REVIEW: 80,
    TargetStage.CLOSED_WON: 100,
    TargetStage.CLOSED_LOST: 0,
})


def _as_target_stage(value: Any) -> TargetStage | None:
    """Coerce a TargetStage or its string value; None if unrecognized."""
    if isinstance(value, TargetStage):
        return value
    if isinstance(value, str):
        try:
            return TargetStage(value)
        except ValueError:
            return None
    return None


# ── Conversion Functions ────────────────────────────────────────────────────


def map_stage_to_target(source_stage: Any) -> TargetStage:
    """Map a Prolibu stage to its Salesforce target stage.

    The input is lowercased and stripped before lookup, so " Proposal \\n",
    "PROPOSAL" and "proposal" are equivalent.

    Args:
        source_stage: Stage name as received from Prolibu.

    Returns:
        The mapped TargetStage.

    Raises:
        InvalidInputError: If source_stage is not a non-empty string.
        UnmappedStageError: If the normalized stage has no mapping.
    """
    if not isinstance(source_stage, str) or not source_stage:
        raise InvalidInputError("Prolibu stage must be a non-empty string")

    normalized = source_stage.strip().lower()
    target = STAGE_MAPPING.get(normalized)

    if target is None:
        logger.debug("stage_map.unmapped", stage=source_stage, normalized=normalized)
        raise UnmappedStageError(source_stage, normalized, list(STAGE_MAPPING))

    return target


def is_valid_target_stage(value: Any) -> bool:
    """Return True if value is one of the Salesforce stage picklist values."""
    return _as_target_stage(value) is not None


def is_closed(target_stage: Any) -> bool:
    """Return True only for CLOSED_WON and CLOSED_LOST; False for anything else."""
    stage = _as_target_stage(target_stage)
    return stage is not None and stage in CLOSED_STAGES


def probability_for(target_stage: Any) -> int:
    """Default probability for a target stage; 0 for unknown stages."""
    stage = _as_target_stage(target_stage)
    if stage is None:
        return 0
    return STAGE_PROBABILITIES.get(stage, 0)


# ── Introspection ───────────────────────────────────────────────────────────


class MappingSummary(BaseModel):
    """Read-only snapshot of the stage mapping for documentation endpoints."""

    total_mappings: int
    source_stages: list[str]
    target_stages: list[str]
    closed_stages: list[str]
    mapping_table: dict[str, str]


def source_stages_for(target_stage: Any) -> list[str]:
    """Inverse lookup: every Prolibu stage that maps to target_stage."""
    stage = _as_target_stage(target_stage)
    if stage is None:
        return []
    return [source for source, target in STAGE_MAPPING.items() if target is stage]


def mapping_summary() -> MappingSummary:
    """Return a snapshot of the full mapping."""
    return MappingSummary(
        total_mappings=len(STAGE_MAPPING),
        source_stages=list(STAGE_MAPPING),
        target_stages=[stage.value for stage in VALID_TARGET_STAGES],
        closed_stages=[stage.value for stage in VALID_TARGET_STAGES if stage in CLOSED_STAGES],
        mapping_table={source: target.value for source, target in STAGE_MAPPING.items()},
    )
