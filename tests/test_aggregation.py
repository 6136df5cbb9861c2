"""Tests for the per-step stable score (top-fraction median over a bounded buffer)."""

from pose_core.aggregation import AggregatorConfig, StepScoreAggregator
from pose_core.types import FrameResult


def _filled(scores, coverage=1.0, config=None):
    agg = StepScoreAggregator(config)
    for s in scores:
        agg.add(s, coverage)
    return agg


# ============================================================================
# Test: stable step score
# ============================================================================

class TestStepScoreAggregator:

    def test_top_fraction_median(self):
        # k = round(6 * 0.3) = 2 -> [90, 95] -> 92.5 -> 93
        assert _filled([40, 40, 40, 90, 90, 95]).stable_score() == 93

    def test_order_does_not_matter(self):
        assert _filled([95, 40, 90, 40, 90, 40]).stable_score() == 93

    def test_empty_is_none(self):
        assert StepScoreAggregator().stable_score() is None

    def test_small_buffer_falls_back_to_full_median(self):
        # k = round(1 * 0.3) = 0
        assert _filled([70]).stable_score() == 70
        # k = round(2 * 0.3) = 1
        assert _filled([60, 80]).stable_score() == 80

    def test_add_frame_score_result(self):
        agg = StepScoreAggregator()
        kept = FrameResult(score=88, per_joint_error={"left_knee": 0.1}, coverage=1.0,
                           feedback_text="", joint_colors={})
        partial = FrameResult(score=40, per_joint_error={}, coverage=0.5,
                              feedback_text="", joint_colors={})
        assert agg.add_result(kept.to_score_result()) is True
        assert agg.add_result(partial.to_score_result()) is False
        assert agg.scores == [88.0]

    def test_ignores_none_and_low_coverage(self):
        agg = StepScoreAggregator()
        assert agg.add(None, 1.0) is False
        assert agg.add(50, 0.84) is False
        assert agg.add(50, 0.85) is True
        assert agg.scores == [50.0]

    def test_capacity_is_fifo(self):
        agg = _filled([10, 20, 30, 40], config=AggregatorConfig(capacity=3))
        assert agg.scores == [20.0, 30.0, 40.0]
        assert len(agg) == 3

    def test_single_low_frame_does_not_drag_score(self):
        agg = _filled([90] * 20 + [5])
        assert agg.stable_score() == 90

    def test_reset(self):
        agg = _filled([80, 90])
        agg.reset()
        assert len(agg) == 0
        assert agg.stable_score() is None
