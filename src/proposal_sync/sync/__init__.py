"""Stage mapping and the proposal → Opportunity sync engine."""

from src.proposal_sync.sync.engine import SyncEngine, SyncOperation, SyncResult
from src.proposal_sync.sync.stage_map import (
    CLOSED_STAGES,
    STAGE_MAPPING,
    TargetStage,
    is_closed,
    map_stage_to_target,
    mapping_summary,
    probability_for,
)

__all__ = [
    "SyncEngine",
    "SyncOperation",
    "SyncResult",
    "TargetStage",
    "STAGE_MAPPING",
    "CLOSED_STAGES",
    "map_stage_to_target",
    "is_closed",
    "probability_for",
    "mapping_summary",
]
