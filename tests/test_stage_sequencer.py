"""
Tests for StageSequencer: effective sequence, display numbering, clamping
"""

import itertools

import pytest

from guided_flow.core.flow_loader import load_flow
from guided_flow.core.stage_sequencer import StageSequencer


def ids(sequence):
    return [stage.id for stage in sequence]


# ========== Scenario A ==========

def test_flagged_stage_included_when_tag_selected(seven_stage_flow):
    sequencer = StageSequencer(seven_stage_flow)
    sequence = sequencer.effective_sequence({"tags": frozenset({"X"})})

    assert len(sequence) == 7
    assert sequencer.logical_to_display(sequence, "stage-5") == 5


def test_flagged_stage_skipped_without_tag(seven_stage_flow):
    sequencer = StageSequencer(seven_stage_flow)
    sequence = sequencer.effective_sequence({"tags": frozenset()})

    assert len(sequence) == 6
    assert "stage-4" not in ids(sequence)
    assert sequencer.logical_to_display(sequence, "stage-5") == 4


# ========== Contiguity ==========

@pytest.mark.parametrize("flow_id", ["diagnostic_questionnaire", "explore_journey"])
def test_display_positions_are_contiguous(flow_id):
    flow = load_flow(flow_id)
    sequencer = StageSequencer(flow)

    subject_options = [frozenset(), frozenset({"quran_memorization"}), frozenset({"arabic_language"})]
    conviction_options = [None, "convinced", "continue"]

    for subjects, conviction in itertools.product(subject_options, conviction_options):
        answers = {"selected_subjects": subjects, "conviction": conviction}
        sequence = sequencer.effective_sequence(answers)
        positions = [sequencer.logical_to_display(sequence, stage.id) for stage in sequence]

        assert positions == list(range(1, len(sequence) + 1))
        for position in positions:
            assert sequencer.logical_to_display(sequence, sequencer.display_to_logical(sequence, position)) == position


def test_display_to_logical_out_of_range(seven_stage_flow):
    sequencer = StageSequencer(seven_stage_flow)
    sequence = sequencer.effective_sequence({})

    assert sequencer.display_to_logical(sequence, 0) is None
    assert sequencer.display_to_logical(sequence, 7) is None
    assert sequencer.display_to_logical(sequence, "2") is None
    assert sequencer.display_to_logical(sequence, 1) == "stage-1"


def test_logical_to_display_for_excluded_stage(seven_stage_flow):
    sequencer = StageSequencer(seven_stage_flow)
    assert sequencer.logical_to_display(sequencer.effective_sequence({}), "stage-4") is None


# ========== Neighbours ==========

def test_next_and_previous_skip_excluded_stages(seven_stage_flow):
    sequencer = StageSequencer(seven_stage_flow)

    assert sequencer.next_stage("stage-3", {}).id == "stage-5"
    assert sequencer.previous_stage("stage-5", {}).id == "stage-3"
    assert sequencer.next_stage("stage-3", {"tags": frozenset({"X"})}).id == "stage-4"
    assert sequencer.next_stage("stage-7", {}) is None
    assert sequencer.previous_stage("stage-1", {}) is None


# ========== Clamping ==========

def test_clamp_moves_back_to_nearest_effective_stage(seven_stage_flow):
    sequencer = StageSequencer(seven_stage_flow)

    assert sequencer.clamp("stage-4", {}) == "stage-3"
    assert sequencer.clamp("stage-4", {"tags": frozenset({"X"})}) == "stage-4"
    assert sequencer.clamp("stage-6", {}) == "stage-6"


def test_clamp_unknown_stage_goes_to_entry(seven_stage_flow):
    sequencer = StageSequencer(seven_stage_flow)
    assert sequencer.clamp("ghost", {}) == "stage-1"


def test_entry_stage_always_effective(seven_stage_flow):
    sequencer = StageSequencer(seven_stage_flow)
    assert sequencer.effective_sequence({})[0].id == "stage-1"


# ========== Caching ==========

def test_sequence_cached_per_answers_content(seven_stage_flow):
    sequencer = StageSequencer(seven_stage_flow)

    first = sequencer.effective_sequence({"tags": frozenset({"X"})})
    second = sequencer.effective_sequence({"tags": frozenset({"X"})})
    third = sequencer.effective_sequence({"tags": frozenset()})

    assert first is second
    assert len(third) == 6


def test_unhashable_answers_still_evaluate(seven_stage_flow):
    sequencer = StageSequencer(seven_stage_flow)
    answers = {"tags": ["X"], "weird": {1: "a", "b": 2}}

    assert len(sequencer.effective_sequence(answers)) == 7
