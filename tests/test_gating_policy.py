"""
Tests for GatingPolicy: can-advance, can-navigate-to, advisories
"""

from guided_flow.core.flow_loader import load_flow
from guided_flow.core.gating_policy import GatingPolicy
from guided_flow.core.stage_sequencer import StageSequencer


def make_policy(flow):
    return GatingPolicy(StageSequencer(flow))


def test_can_advance_follows_completeness(seven_stage_flow):
    policy = make_policy(seven_stage_flow)

    assert policy.can_advance("stage-1", {}) is True
    assert policy.can_advance("stage-2", {}) is False
    assert policy.can_advance("stage-2", {"name": "Amina"}) is True


def test_can_advance_unknown_stage_is_false(seven_stage_flow):
    assert make_policy(seven_stage_flow).can_advance("ghost", {}) is False


def test_navigation_bounded_by_high_water_mark(seven_stage_flow):
    policy = make_policy(seven_stage_flow)

    assert policy.can_navigate_to("stage-2", "stage-5", {}) is True
    assert policy.can_navigate_to("stage-5", "stage-5", {}) is True
    assert policy.can_navigate_to("stage-6", "stage-5", {}) is False


def test_navigation_to_excluded_stage_rejected(seven_stage_flow):
    policy = make_policy(seven_stage_flow)

    assert policy.can_navigate_to("stage-4", "stage-6", {}) is False
    assert policy.can_navigate_to("stage-4", "stage-6", {"tags": frozenset({"X"})}) is True


def test_excluded_high_water_mark_is_clamped(seven_stage_flow):
    policy = make_policy(seven_stage_flow)

    assert policy.effective_high_water_mark("stage-4", {}) == "stage-3"
    assert policy.can_navigate_to("stage-3", "stage-4", {}) is True
    assert policy.can_navigate_to("stage-5", "stage-4", {}) is False


def test_navigation_to_unknown_stage_rejected(seven_stage_flow):
    assert make_policy(seven_stage_flow).can_navigate_to("ghost", "stage-7", {}) is False


def test_questionnaire_approach_gating():
    policy = make_policy(load_flow("diagnostic_questionnaire"))
    base = {"selected_subjects": frozenset({"quran_memorization"})}

    assert policy.can_advance("approach", base) is False
    assert policy.can_advance("approach", {**base, "learning_priority": "balanced"}) is True

    memorization = {**base, "learning_priority": "memorization_first"}
    assert policy.can_advance("approach", memorization) is False
    assert policy.can_advance("approach", {**memorization, "reconsidered_approach": "try_talbiyah"}) is True


def test_questionnaire_advisory_only_for_still_memorization():
    policy = make_policy(load_flow("diagnostic_questionnaire"))
    answers = {"learning_priority": "memorization_first"}

    assert policy.pending_advisory("approach", {**answers, "reconsidered_approach": "try_talbiyah"}) is None

    advisory = policy.pending_advisory("approach", {**answers, "reconsidered_approach": "still_memorization"})
    assert advisory.code == "methodology_misaligned"
    assert policy.pending_advisory("challenges", answers) is None


def test_current_level_requires_arabic_reading_only_for_quran():
    policy = make_policy(load_flow("diagnostic_questionnaire"))

    assert policy.can_advance("current-level", {"current_level": "beginner"}) is True
    quran = {"current_level": "beginner", "selected_subjects": frozenset({"tajweed"})}
    assert policy.can_advance("current-level", quran) is False
    assert policy.can_advance("current-level", {**quran, "can_read_arabic": "yes"}) is True
