import logging

from pose_core.feedback import MSG_NO_POSE
from pose_core.pipeline import MSG_NO_TEMPLATE
from pose_core.session import PoseSession, SessionConfig
from pose_core.skeleton import L_ELBOW, L_HIP, L_WRIST, R_HIP
from pose_core.template_builder import build_template
from pose_core.templates import PoseTemplate

from poses import make_landmarks


def _templates():
    upright = make_landmarks()
    arm_out = make_landmarks({L_ELBOW: (0.75, 0.30), L_WRIST: (0.90, 0.30)})
    return [build_template("stand", upright), build_template("arm_out", arm_out)]


# ============================================================================
# Test: step lifecycle
# ============================================================================

class TestStepLifecycle:

    def test_starts_on_first_step(self):
        s = PoseSession(_templates())
        assert s.step_index == 0
        assert s.step_count == 2
        assert s.current_template.pose_id == "stand"

    def test_advance_resets_smoother_and_aggregator(self, upright):
        s = PoseSession(_templates())
        for _ in range(5):
            s.process(upright)
        assert len(s.smoother) > 0
        assert len(s.aggregator) == 5

        result = s.advance()
        assert result.pose_id == "stand"
        assert result.stable_score == 100
        assert result.samples == 5
        assert s.step_index == 1
        assert len(s.smoother) == 0
        assert len(s.aggregator) == 0

    def test_finish_after_last_step(self, upright):
        s = PoseSession(_templates())
        s.process(upright)
        s.advance()
        s.advance()
        assert s.finished
        assert s.current_template is None
        assert [r.pose_id for r in s.step_results] == ["stand", "arm_out"]
        assert s.step_results[1].stable_score is None

    def test_loop_wraps_to_first_step(self):
        s = PoseSession(_templates(), SessionConfig(loop=True))
        s.advance()
        s.advance()
        assert not s.finished
        assert s.step_index == 0

    def test_finish_closes_current_step(self, upright):
        s = PoseSession(_templates())
        for _ in range(3):
            s.process(upright)
        results = s.finish()
        assert len(results) == 1
        assert results[0].stable_score == 100
        assert len(s.aggregator) == 0
        assert s.finish() == results

    def test_auto_advance_by_time(self, upright):
        s = PoseSession(_templates(), SessionConfig(step_seconds=10.0))
        s.process(upright, 0.0)
        s.process(upright, 5.0)
        assert s.step_index == 0
        s.process(upright, 10.0)
        assert s.step_index == 1
        s.process(upright, 19.0)
        assert s.step_index == 1

    def test_set_template_swaps_whole_template(self, upright):
        s = PoseSession(_templates())
        s.process(upright)
        replacement = PoseTemplate("custom", {"left_knee": 176.0})
        s.set_template(replacement)
        assert s.current_template is replacement
        assert len(s.smoother) == 0


# ============================================================================
# Test: per-frame behaviour
# ============================================================================

class TestFrames:

    def test_missing_hips_gives_no_score(self):
        s = PoseSession(_templates())
        res = s.process(make_landmarks({L_HIP: None, R_HIP: None}))
        assert res.score is None
        assert res.feedback_text == MSG_NO_POSE
        assert len(s.aggregator) == 0

    def test_no_templates(self, upright):
        s = PoseSession()
        assert s.current_template is None
        res = s.process(upright)
        assert res.score is None
        assert res.feedback_text == MSG_NO_TEMPLATE

    def test_wrong_pose_scores_lower(self, upright):
        s = PoseSession(_templates())
        s.advance()
        res = s.process(upright)
        assert res.score is not None
        assert res.score < 100

    def test_degenerate_template_warns_once(self, upright, caplog):
        degenerate = PoseTemplate("empty", {})
        with caplog.at_level(logging.WARNING, logger="pose_core.session"):
            s = PoseSession([degenerate, degenerate], SessionConfig(loop=True))
            for _ in range(10):
                assert s.process(upright).score is None
            s.advance()
            s.process(upright)
        warnings = [r for r in caplog.records if "empty" in r.getMessage()]
        assert len(warnings) == 1


class TestSessionConfig:

    def test_from_dict(self):
        cfg = SessionConfig.from_dict({
            "visibility_threshold": 0.7,
            "coverage_penalty": True,
            "max_hints": 1,
            "buffer_capacity": 100,
            "step_seconds": 10,
            "loop": True,
            "unknown": "ignored",
        })
        assert cfg.pipeline.scoring.visibility_threshold == 0.7
        assert cfg.pipeline.coverage.enabled
        assert cfg.pipeline.feedback.max_hints == 1
        assert cfg.aggregator.capacity == 100
        assert cfg.step_seconds == 10.0
        assert cfg.loop

    def test_defaults(self):
        cfg = SessionConfig.from_dict({})
        assert cfg.step_seconds is None
        assert not cfg.pipeline.coverage.enabled
        assert cfg.smoothing_window == 7
