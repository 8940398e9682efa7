# Milestone tracking and progress aggregation

from app.modules.milestones.aggregator import (
    MilestoneProgress,
    MilestoneProgressAggregator,
    milestone_aggregator,
)
from app.modules.milestones.service import MilestoneService

__all__ = [
    "MilestoneProgress",
    "MilestoneProgressAggregator",
    "milestone_aggregator",
    "MilestoneService",
]
