"""Tests for the visibility gate, angle scorer, hybrid terms and coverage policy."""

import math

import numpy as np
import pytest

from pose_core.features import compute_joint_angles, embed_pose
from pose_core.normalizer import normalize_pose
from pose_core.scoring import (
    CoveragePolicy,
    ScoringConfig,
    apply_coverage_policy,
    blend_scores,
    bone_cosine_score,
    embedding_similarity,
    gate_joints,
    joint_visible,
    lift_score,
    round_half_up,
    score_angles,
    wrap_diff,
)
from pose_core.skeleton import L_ELBOW, L_SHOULDER, L_WRIST
from pose_core.templates import PoseTemplate

from poses import make_landmarks, transform_landmarks

FULL_VIS = np.ones(33)


def _template(angles, tolerance=None, weights=None):
    return PoseTemplate(
        pose_id="t",
        angles_deg=angles,
        tolerance_deg=tolerance or {},
        weights=weights or {},
    )


ELBOW_KNEE = _template(
    {"left_elbow": 90.0, "left_knee": 170.0},
    {"left_elbow": 15.0, "left_knee": 20.0},
    {"left_elbow": 1.0, "left_knee": 1.0},
)


# ============================================================================
# Test: angle helpers
# ============================================================================

class TestAngleHelpers:

    @pytest.mark.parametrize("a,b,expected", [
        (350.0, 10.0, 20.0),
        (10.0, 350.0, 20.0),
        (0.0, 180.0, 180.0),
        (90.0, 90.0, 0.0),
        (-30.0, 30.0, 60.0),
        (720.0, 10.0, 10.0),
    ])
    def test_wrap_diff(self, a, b, expected):
        assert wrap_diff(a, b) == pytest.approx(expected)

    def test_wrap_diff_symmetric_and_bounded(self):
        rng = np.random.RandomState(0)
        for a, b in rng.uniform(-720, 720, size=(200, 2)):
            d = wrap_diff(a, b)
            assert d == pytest.approx(wrap_diff(b, a))
            assert 0.0 <= d <= 180.0

    def test_round_half_up(self):
        assert round_half_up(2.5) == 3
        assert round_half_up(0.5) == 1
        assert round_half_up(92.5) == 93
        assert round_half_up(2.49) == 2

    def test_lift_score_bounds(self):
        assert lift_score(0.0) == 100
        assert lift_score(1.0) == 0
        assert lift_score(0.5) == 66


# ============================================================================
# Test: visibility gate
# ============================================================================

class TestVisibilityGate:

    def test_low_visibility_excludes_joint(self):
        vis = FULL_VIS.copy()
        vis[L_WRIST] = 0.2
        assert not joint_visible("left_elbow", vis)
        assert joint_visible("left_knee", vis)

    def test_missing_visibility_entry_counts_as_zero(self):
        assert not joint_visible("left_knee", np.ones(20))

    def test_gate_is_monotonic_in_visibility(self):
        angles = {"left_elbow": 90.0, "right_elbow": 90.0, "left_knee": 170.0, "spine_tilt": 2.0}
        rng = np.random.RandomState(1)
        low = rng.uniform(0.0, 1.0, size=33)
        high = np.minimum(1.0, low + rng.uniform(0.0, 0.5, size=33))
        assert set(gate_joints(angles, low)) <= set(gate_joints(angles, high))


# ============================================================================
# Test: angle scorer
# ============================================================================

class TestScoreAngles:

    def test_exact_match_scores_100(self):
        res = score_angles({"left_elbow": 90.0, "left_knee": 170.0}, ELBOW_KNEE, FULL_VIS)
        assert res.score == 100
        assert res.coverage == 1.0

    def test_trim_worst_masks_single_bad_joint(self):
        res = score_angles({"left_elbow": 120.0, "left_knee": 170.0}, ELBOW_KNEE, FULL_VIS)
        assert res.score == 100
        assert res.rows[0].joint == "left_elbow"
        assert res.rows[0].norm_error == 1.0
        assert res.joint_errors == {"left_elbow": 1.0, "left_knee": 0.0}

    def test_single_joint_is_not_trimmed(self):
        tpl = _template({"left_elbow": 90.0}, {"left_elbow": 15.0})
        assert score_angles({"left_elbow": 105.0}, tpl, FULL_VIS).score == 0
        assert score_angles({"left_elbow": 97.5}, tpl, FULL_VIS).score == 66

    def test_weighted_mean_after_trim(self):
        tpl = _template(
            {"left_elbow": 90.0, "right_elbow": 90.0, "left_knee": 90.0},
            {"left_elbow": 10.0, "right_elbow": 10.0, "left_knee": 10.0},
            {"right_elbow": 3.0},
        )
        res = score_angles({"left_elbow": 100.0, "right_elbow": 95.0, "left_knee": 90.0}, tpl, FULL_VIS)
        # mae = (0.5*3 + 0*1) / 4
        assert res.score == round_half_up(100 * (1 - 0.375) ** 0.6)

    def test_zero_tolerance_falls_back_to_default(self):
        tpl = _template({"left_elbow": 90.0}, {"left_elbow": 0.0})
        res = score_angles({"left_elbow": 96.0}, tpl, FULL_VIS)
        assert res.rows[0].norm_error == pytest.approx(0.5)

    def test_wraparound_difference(self):
        tpl = _template({"spine_tilt": 350.0}, {"spine_tilt": 20.0})
        res = score_angles({"spine_tilt": 10.0}, tpl, FULL_VIS)
        assert res.rows[0].diff_deg == pytest.approx(20.0)
        assert res.score == 0

    def test_untemplated_joints_ignored(self):
        res = score_angles({"left_elbow": 90.0, "left_knee": 170.0, "right_hip": 10.0}, ELBOW_KNEE, FULL_VIS)
        assert set(res.joint_errors) == {"left_elbow", "left_knee"}

    def test_nan_joint_is_removed(self):
        res = score_angles({"left_elbow": math.nan, "left_knee": 170.0}, ELBOW_KNEE, FULL_VIS)
        assert set(res.joint_errors) == {"left_knee"}
        assert res.coverage == 0.5

    def test_gated_joint_reduces_coverage(self):
        vis = FULL_VIS.copy()
        vis[L_WRIST] = 0.1
        res = score_angles({"left_elbow": 150.0, "left_knee": 170.0}, ELBOW_KNEE, vis)
        assert res.score == 100
        assert res.coverage == 0.5

    def test_no_surviving_joint_is_none(self):
        res = score_angles({}, ELBOW_KNEE, FULL_VIS)
        assert res.score is None
        assert res.rows == []
        assert score_angles({"left_elbow": 90.0}, ELBOW_KNEE, np.zeros(33)).score is None

    def test_score_bounds(self):
        rng = np.random.RandomState(2)
        for _ in range(50):
            user = {"left_elbow": rng.uniform(0, 180), "left_knee": rng.uniform(0, 180)}
            s = score_angles(user, ELBOW_KNEE, FULL_VIS).score
            assert 0 <= s <= 100

    def test_delta_sign_is_reference_minus_user(self):
        res = score_angles({"left_elbow": 70.0, "left_knee": 170.0}, ELBOW_KNEE, FULL_VIS)
        elbow = next(r for r in res.rows if r.joint == "left_elbow")
        assert elbow.delta_deg == pytest.approx(20.0)

    def test_zero_weight_joint_is_not_trimmed_away(self):
        tpl = _template({"left_knee": 170.0, "left_elbow": 90.0}, weights={"left_elbow": 0.0})
        res = score_angles({"left_knee": 170.0, "left_elbow": 90.0}, tpl, FULL_VIS)
        assert res.score == 100
        assert set(res.joint_errors) == {"left_knee", "left_elbow"}

    def test_only_zero_weights_is_none(self):
        tpl = _template({"left_knee": 170.0}, weights={"left_knee": 0.0})
        res = score_angles({"left_knee": 170.0}, tpl, FULL_VIS)
        assert res.score is None
        assert res.coverage == 1.0

    def test_tied_trim_ignores_template_order(self):
        angles = {"left_elbow": 90.0, "left_knee": 90.0, "right_elbow": 90.0}
        weights = {"left_elbow": 1.0, "left_knee": 3.0, "right_elbow": 1.0}
        user = {"left_elbow": 120.0, "left_knee": 120.0, "right_elbow": 90.0}
        forward = _template(angles, weights=weights)
        backward = _template(dict(reversed(list(angles.items()))), weights=weights)
        a = score_angles(user, forward, FULL_VIS)
        b = score_angles(user, backward, FULL_VIS)
        assert a.score == b.score == lift_score(0.75)
        assert [r.joint for r in a.rows] == [r.joint for r in b.rows]

    def test_disable_trim(self):
        cfg = ScoringConfig(trim_worst=False)
        res = score_angles({"left_elbow": 120.0, "left_knee": 170.0}, ELBOW_KNEE, FULL_VIS, cfg)
        assert res.score == lift_score(0.5)


# ============================================================================
# Test: hybrid terms
# ============================================================================

class TestHybridTerms:

    def test_identical_pose_scores_100(self, upright):
        pose = normalize_pose(upright)
        assert bone_cosine_score(pose, pose, FULL_VIS) == pytest.approx(100.0)
        emb = embed_pose(pose)
        assert embedding_similarity(emb, emb) == pytest.approx(100.0)

    def test_transformed_pose_still_matches(self, upright):
        ref = normalize_pose(upright)
        user = normalize_pose(transform_landmarks(upright, angle_deg=-15.0, scale=1.4, shift=(0.05, 0.0)))
        assert bone_cosine_score(user, ref, FULL_VIS) == pytest.approx(100.0, abs=1e-3)
        assert embedding_similarity(embed_pose(user), embed_pose(ref)) == pytest.approx(100.0, abs=0.1)

    def test_bent_arm_lowers_bone_score(self, upright):
        ref = normalize_pose(upright)
        user = normalize_pose(make_landmarks({L_ELBOW: (0.75, 0.30), L_WRIST: (0.90, 0.30)}))
        assert bone_cosine_score(user, ref, FULL_VIS) < 100.0

    def test_bone_score_none_without_visible_bones(self, upright):
        pose = normalize_pose(upright)
        assert bone_cosine_score(pose, pose, np.zeros(33)) is None

    def test_nan_visibility_gates_bone_like_joint(self, upright):
        ref = normalize_pose(upright)
        user = normalize_pose(make_landmarks({L_ELBOW: (0.75, 0.30)}))
        nan_vis = FULL_VIS.copy()
        nan_vis[L_ELBOW] = np.nan
        zero_vis = FULL_VIS.copy()
        zero_vis[L_ELBOW] = 0.0
        assert not joint_visible("left_elbow", nan_vis)
        assert bone_cosine_score(user, ref, nan_vis) == pytest.approx(bone_cosine_score(user, ref, zero_vis))
        assert bone_cosine_score(user, ref, FULL_VIS) < bone_cosine_score(user, ref, nan_vis)

    def test_embedding_mismatch_is_none(self):
        assert embedding_similarity(None, np.zeros(44)) is None
        assert embedding_similarity(np.zeros(44), np.zeros(10)) is None

    def test_embedding_far_apart_is_zero(self):
        assert embedding_similarity(np.zeros(44), np.full(44, 10.0)) == 0.0

    def test_blend_without_reference_shape_is_angle_score(self):
        assert blend_scores(80, 10.0, 10.0, has_reference_shape=False) == 80
        assert blend_scores(None, 90.0, 90.0, has_reference_shape=False) is None

    def test_blend_full(self):
        assert blend_scores(80, 100.0, 100.0, has_reference_shape=True) == 88

    def test_blend_missing_components_count_as_zero(self):
        assert blend_scores(80, None, None, has_reference_shape=True) == 48

    def test_blend_fallback_without_angle_score(self):
        assert blend_scores(None, 80.0, None, has_reference_shape=True) == 52
        assert blend_scores(None, 100.0, 100.0, has_reference_shape=True) == 100
        assert blend_scores(None, None, None, has_reference_shape=True) is None


# ============================================================================
# Test: coverage policy
# ============================================================================

class TestCoveragePolicy:

    def test_disabled_by_default(self):
        assert CoveragePolicy().factor(0.1) == 1.0
        assert apply_coverage_policy(90, 0.1) == 90

    def test_linear_ramp(self):
        pol = CoveragePolicy(enabled=True)
        assert pol.factor(1.0) == 1.0
        assert pol.factor(0.75) == 0.0
        assert pol.factor(0.5) == 0.0
        assert pol.factor(0.875) == pytest.approx(0.5)
        assert apply_coverage_policy(90, 0.875, pol) == 45

    def test_none_passes_through(self):
        assert apply_coverage_policy(None, 1.0, CoveragePolicy(enabled=True)) is None


# ============================================================================
# Test: invariance of the full angle score
# ============================================================================

class TestInvariance:

    @pytest.mark.parametrize("angle,scale,shift", [
        (0.0, 1.0, (0.2, -0.1)),
        (0.0, 0.5, (0.0, 0.0)),
        (30.0, 1.0, (0.0, 0.0)),
        (-40.0, 1.7, (0.1, 0.1)),
    ])
    def test_score_invariant_to_similarity_transform(self, angle, scale, shift):
        base = make_landmarks({L_SHOULDER: (0.61, 0.31)})
        tpl = _template({"left_elbow": 120.0, "right_elbow": 150.0, "left_knee": 175.0, "spine_tilt": 0.0})
        ref = score_angles(compute_joint_angles(normalize_pose(base)), tpl, FULL_VIS)
        moved = transform_landmarks(base, angle_deg=angle, scale=scale, shift=shift)
        res = score_angles(compute_joint_angles(normalize_pose(moved)), tpl, FULL_VIS)
        assert res.score == ref.score
        for a, b in zip(ref.rows, res.rows):
            assert a.joint == b.joint
            assert a.diff_deg == pytest.approx(b.diff_deg, abs=1e-4)
