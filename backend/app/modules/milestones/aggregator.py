"""
Milestone progress aggregation.

Pure functions over a thesis's milestone set. Nothing is stored: the
summary is recomputed on every read, so it can never drift from the
milestones themselves.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional, Sequence

from app.models.milestone import MilestoneStatus


@dataclass(frozen=True)
class MilestoneProgress:
    total: int
    completed: int
    in_progress: int
    not_started: int
    pending_review: int
    revision_needed: int
    percent_complete: float
    average_progress: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "completed": self.completed,
            "inProgress": self.in_progress,
            "notStarted": self.not_started,
            "pendingReview": self.pending_review,
            "revisionNeeded": self.revision_needed,
            "percentComplete": self.percent_complete,
            "averageProgress": self.average_progress,
        }


def _status(milestone: Any) -> MilestoneStatus:
    return MilestoneStatus(milestone.status)


class MilestoneProgressAggregator:
    """Completion summary and "what's next" for a milestone set"""

    def summarize(self, milestones: Iterable[Any]) -> MilestoneProgress:
        items: Sequence[Any] = list(milestones)
        total = len(items)

        counts = {status: 0 for status in MilestoneStatus}
        progress_sum = 0
        for milestone in items:
            counts[_status(milestone)] += 1
            progress_sum += min(max(milestone.progress_percentage or 0, 0), 100)

        completed = counts[MilestoneStatus.COMPLETED]
        percent = round(completed / total * 100, 2) if total else 0.0
        average = round(progress_sum / total, 2) if total else 0.0

        return MilestoneProgress(
            total=total,
            completed=completed,
            in_progress=counts[MilestoneStatus.IN_PROGRESS],
            not_started=counts[MilestoneStatus.NOT_STARTED],
            pending_review=counts[MilestoneStatus.PENDING_REVIEW],
            revision_needed=counts[MilestoneStatus.REVISION_NEEDED],
            percent_complete=percent,
            average_progress=average,
        )

    def next_milestone(self, milestones: Iterable[Any]) -> Optional[Any]:
        """
        Lowest ``order_index`` among the milestones not yet completed.
        None means everything is complete. Ties keep input order.
        """
        remaining = [m for m in milestones if _status(m) is not MilestoneStatus.COMPLETED]
        if not remaining:
            return None
        return sorted(remaining, key=lambda m: m.order_index)[0]


milestone_aggregator = MilestoneProgressAggregator()
