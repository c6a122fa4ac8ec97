"""
Tests for FlowSubmitter: completion checks, record handoff, failures
"""

import pytest

from conftest import MockRecordStore
from guided_flow.commands import FlowRunState
from guided_flow.core.flow_loader import build_flow, load_flow
from guided_flow.core.flow_submitter import FlowSubmitter
from guided_flow.persistence import ProgressPersistence
from guided_flow.results import SubmissionAccepted, SubmissionFailed


def questionnaire_answers(**overrides):
    answers = {
        "user_type": "student",
        "selected_subjects": frozenset({"quran_memorization"}),
        "specific_goals": "Memorize Juz Amma",
        "timeline_expectation": "6 months",
        "current_level": "beginner",
        "can_read_arabic": "yes",
        "learning_priority": "fluency_first",
        "main_challenges": frozenset({"consistency"}),
        "learning_styles": frozenset({"visual"}),
        "lesson_frequency": "weekly",
        "preferred_schedule": frozenset({"weekends"}),
        "student_name": "Amina",
        "student_age": 12,
        "student_gender": "female",
        "parent_involved": "yes",
    }
    answers.update(overrides)
    return answers


def terminal_state(flow, answers, current=None):
    last = current or flow.stages[-1].id
    return FlowRunState(
        flow_id=flow.flow_id,
        current_stage=last,
        high_water_mark=flow.stages[-1].id,
        answers=answers,
    )


@pytest.fixture
def questionnaire():
    return load_flow("diagnostic_questionnaire")


@pytest.fixture
def journey():
    return load_flow("explore_journey")


# ========== Completion checks ==========

def test_record_store_interface_checked(questionnaire):
    with pytest.raises(TypeError):
        FlowSubmitter(questionnaire, object())


def test_incomplete_run_rejected(questionnaire):
    store = MockRecordStore()
    state = terminal_state(questionnaire, questionnaire_answers(), current="challenges")

    result = FlowSubmitter(questionnaire, store).submit(state, user_id="user-1")

    assert isinstance(result, SubmissionFailed)
    assert result.reason == "Flow is not complete"
    assert store.inserted == []


def test_state_from_other_flow_rejected(questionnaire, journey):
    result = FlowSubmitter(questionnaire, MockRecordStore()).submit(terminal_state(journey, {}), "user-1")
    assert isinstance(result, SubmissionFailed)


def test_required_identity_missing(questionnaire):
    result = FlowSubmitter(questionnaire, MockRecordStore()).submit(
        terminal_state(questionnaire, questionnaire_answers()), user_id=None
    )
    assert result.operation == "identity_lookup"


# ========== Success path ==========

def test_questionnaire_submission(questionnaire, memory_store):
    store = MockRecordStore()
    persistence = ProgressPersistence(memory_store, questionnaire)
    state = terminal_state(questionnaire, questionnaire_answers())
    persistence.save(state)

    result = FlowSubmitter(questionnaire, store, persistence).submit(state, user_id="user-1")

    assert isinstance(result, SubmissionAccepted)
    assert result.record_id == "rec-1"
    assert result.destination == "/diagnostic/book/rec-1"

    collection, record = store.inserted[0]
    assert collection == "diagnostic_assessments"
    assert record["student_id"] == "user-1"
    assert record["methodology_alignment"] == "strong"
    assert store.updated == [("profiles", "user-1", {"diagnostic_assessment_id": "rec-1"})]
    assert memory_store.data == {}


def test_anonymous_journey_skips_remote_calls(journey, memory_store):
    store = MockRecordStore()
    persistence = ProgressPersistence(memory_store, journey)
    state = terminal_state(journey, {"next_step": "new_muslim"})
    persistence.save(state)

    result = FlowSubmitter(journey, store, persistence).submit(state)

    assert result == SubmissionAccepted(record_id=None, destination="/new-muslim")
    assert store.inserted == [] and store.updated == []
    assert memory_store.data == {}


def test_signed_in_journey_records_completion(journey):
    store = MockRecordStore()
    state = terminal_state(journey, {"next_step": "dashboard", "agreed_axioms": frozenset({"a", "b"})})

    result = FlowSubmitter(journey, store).submit(state, user_id="user-7")

    assert result.destination == "/dashboard"
    assert store.inserted[0][1]["verified_count"] == 2
    assert store.updated == [("profiles", "user-7", {"explore_completed": True})]


# ========== Failures ==========

@pytest.mark.parametrize("operation", ["insert", "update"])
def test_remote_failure_keeps_progress(questionnaire, memory_store, operation):
    persistence = ProgressPersistence(memory_store, questionnaire)
    state = terminal_state(questionnaire, questionnaire_answers())
    persistence.save(state)

    result = FlowSubmitter(questionnaire, MockRecordStore(fail_on=operation), persistence).submit(state, "user-1")

    assert isinstance(result, SubmissionFailed)
    assert result.operation == operation
    assert persistence.load() == state


# ========== Effective answers ==========

def test_orphaned_answers_dropped_from_record(questionnaire):
    store = MockRecordStore()
    answers = questionnaire_answers(
        selected_subjects=frozenset({"arabic_language"}),
        learning_priority="memorization_first",
        reconsidered_approach="still_memorization",
    )

    FlowSubmitter(questionnaire, store).submit(terminal_state(questionnaire, answers), "user-1")

    record = store.inserted[0][1]
    assert "learning_priority" not in record["pre_assessment_responses"]
    assert record["methodology_alignment"] == "moderate"


def test_undeclared_answers_kept():
    flow = build_flow({
        "flow_id": "tiny",
        "stages": [{"id": "only", "ordinal": 0}],
    })
    state = terminal_state(flow, {"note": "keep me"})

    assert FlowSubmitter(flow, MockRecordStore()).effective_answers(state) == {"note": "keep me"}


def test_destination_default_when_answer_unmapped(journey):
    submitter = FlowSubmitter(journey, MockRecordStore())
    assert submitter.resolve_destination({}, None) == "/dashboard"
