"""
Shared fixtures for the guided flow test suite.
"""

import pytest

from guided_flow.core.flow_loader import build_flow
from guided_flow.persistence import InMemoryKeyValueStore


def seven_stage_definition():
    """
    Seven stages; stage-4 is included only when 'X' is among the tags.
    stage-2 can only be left once a name is given.
    """
    stages = []
    for n in range(1, 8):
        stage = {"id": f"stage-{n}", "ordinal": n, "title": f"Stage {n}"}
        if n == 4:
            stage["include_if"] = {"contains": ["tags", "X"]}
            stage["fields"] = ["flagged_detail"]
        stages.append(stage)

    stages[1]["complete_when"] = {"filled": "name"}
    stages[1]["fields"] = ["name"]

    return {
        "flow_id": "seven_stage",
        "fields": {
            "tags": {"type": "tags"},
            "name": {"type": "text", "max_length": 20},
            "flagged_detail": {"type": "text"},
        },
        "stages": stages,
    }


def goals_definition():
    return {
        "flow_id": "goals_flow",
        "fields": {"selected_subjects": {"type": "tags"}},
        "stages": [
            {"id": "welcome", "ordinal": 0},
            {"id": "goals", "ordinal": 1, "fields": ["selected_subjects"],
             "complete_when": {"filled": "selected_subjects"}},
            {"id": "done", "ordinal": 2},
        ],
    }


@pytest.fixture
def seven_stage_flow():
    return build_flow(seven_stage_definition())


@pytest.fixture
def goals_flow():
    return build_flow(goals_definition())


@pytest.fixture
def memory_store():
    return InMemoryKeyValueStore()


class MockIdentity:
    """Identity lookup returning a fixed user (or raising)"""

    def __init__(self, user_id="user-1", should_fail=False):
        self.user_id = user_id
        self.should_fail = should_fail
        self.call_count = 0

    def get_current_user(self):
        self.call_count += 1
        if self.should_fail:
            raise ConnectionError("auth service unavailable")
        return self.user_id


class MockRecordStore:
    """Record store that remembers calls and can fail on demand"""

    def __init__(self, fail_on=None):
        self.fail_on = fail_on
        self.inserted = []
        self.updated = []

    def insert(self, collection, record):
        if self.fail_on == 'insert':
            raise ConnectionError("insert timed out")
        self.inserted.append((collection, record))
        return f"rec-{len(self.inserted)}"

    def update(self, collection, record_id, patch):
        if self.fail_on == 'update':
            raise ConnectionError("update rejected")
        self.updated.append((collection, record_id, patch))


class FailingStore:
    """Durable store whose every operation raises"""

    def read(self, key):
        raise OSError("storage unavailable")

    def write(self, key, value):
        raise OSError("quota exceeded")

    def delete(self, key):
        raise OSError("storage unavailable")
