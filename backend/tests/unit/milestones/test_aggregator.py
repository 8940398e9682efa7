"""
Unit Tests for MilestoneProgressAggregator
"""
from dataclasses import dataclass

from app.models.milestone import MilestoneStatus
from app.modules.milestones.aggregator import MilestoneProgressAggregator


@dataclass
class Item:
    order_index: int
    status: MilestoneStatus
    progress_percentage: int = 0
    title: str = ""


class TestSummarize:
    """Test progress summaries"""

    def test_two_of_five_completed(self):
        """Test 2 completed out of 5 is 40 percent"""
        items = [
            Item(1, MilestoneStatus.COMPLETED, 100),
            Item(2, MilestoneStatus.COMPLETED, 100),
            Item(3, MilestoneStatus.IN_PROGRESS, 50),
            Item(4, MilestoneStatus.NOT_STARTED),
            Item(5, MilestoneStatus.NOT_STARTED),
        ]

        progress = MilestoneProgressAggregator().summarize(items)

        assert progress.percent_complete == 40
        assert progress.total == 5
        assert progress.completed == 2
        assert progress.in_progress == 1
        assert progress.not_started == 2
        assert progress.average_progress == 50

    def test_empty_set(self):
        """Test no milestones means zero, not a division error"""
        progress = MilestoneProgressAggregator().summarize([])

        assert progress.total == 0
        assert progress.percent_complete == 0.0
        assert progress.average_progress == 0.0

    def test_rounding(self):
        """Test one of three rounds to two decimals"""
        items = [Item(1, MilestoneStatus.COMPLETED, 100), Item(2, MilestoneStatus.PENDING_REVIEW),
                 Item(3, MilestoneStatus.REVISION_NEEDED)]

        progress = MilestoneProgressAggregator().summarize(items)

        assert progress.percent_complete == 33.33
        assert progress.pending_review == 1
        assert progress.revision_needed == 1

    def test_progress_clamped(self):
        """Test out-of-range percentages do not skew the average"""
        items = [Item(1, MilestoneStatus.IN_PROGRESS, 150), Item(2, MilestoneStatus.IN_PROGRESS, -20)]

        assert MilestoneProgressAggregator().summarize(items).average_progress == 50

    def test_to_dict_is_camel_case(self):
        """Test the wire form"""
        data = MilestoneProgressAggregator().summarize([Item(1, MilestoneStatus.NOT_STARTED)]).to_dict()

        assert set(data) == {"total", "completed", "inProgress", "notStarted", "pendingReview",
                             "revisionNeeded", "percentComplete", "averageProgress"}


class TestNextMilestone:
    """Test picking the next milestone"""

    def test_lowest_incomplete_order(self):
        """Test the first non-completed milestone by order"""
        items = [
            Item(5, MilestoneStatus.NOT_STARTED),
            Item(1, MilestoneStatus.COMPLETED),
            Item(3, MilestoneStatus.IN_PROGRESS),
            Item(2, MilestoneStatus.COMPLETED),
            Item(4, MilestoneStatus.NOT_STARTED),
        ]

        assert MilestoneProgressAggregator().next_milestone(items).order_index == 3

    def test_all_complete(self):
        """Test None once everything is done"""
        items = [Item(1, MilestoneStatus.COMPLETED), Item(2, MilestoneStatus.COMPLETED)]

        assert MilestoneProgressAggregator().next_milestone(items) is None

    def test_empty(self):
        assert MilestoneProgressAggregator().next_milestone([]) is None

    def test_ties_keep_input_order(self):
        """Test equal order_index resolves to the earlier item"""
        first = Item(2, MilestoneStatus.NOT_STARTED, title="a")
        second = Item(2, MilestoneStatus.NOT_STARTED, title="b")

        assert MilestoneProgressAggregator().next_milestone([first, second]) is first

    def test_revision_needed_counts_as_incomplete(self):
        """Test a milestone sent back is next again"""
        items = [Item(1, MilestoneStatus.REVISION_NEEDED), Item(2, MilestoneStatus.NOT_STARTED)]

        assert MilestoneProgressAggregator().next_milestone(items).order_index == 1
