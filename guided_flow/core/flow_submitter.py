"""
Flow Submitter - Completion handoff to the remote record store

Responsibilities:
- Check the run is on its terminal stage and that stage is complete
- Drop answers owned only by stages outside the effective sequence
- Build the final record and insert it; patch the user's profile
- Clear persisted progress and resolve the exit destination

Failure handling:
- External call failures come back as SubmissionFailed
- The run state and persisted progress are left untouched on failure,
  so the user can retry without losing answers
- Nothing is retried here; retries are the caller's decision
"""

import logging
from typing import Any, Dict, Optional

from guided_flow.commands import FlowRunState
from guided_flow.contracts import FlowDefinition
from guided_flow.core.gating_policy import GatingPolicy
from guided_flow.core.stage_sequencer import StageSequencer
from guided_flow.results import SubmissionAccepted, SubmissionFailed
from guided_flow.utils.record_builders import RECORD_BUILDERS

logger = logging.getLogger(__name__)


class FlowSubmitter:
    """Hands a completed run over to the record store."""

    def __init__(self, flow: FlowDefinition, record_store, persistence=None):
        """
        Args:
            flow: Flow definition of the runs being submitted
            record_store: Object with insert(collection, record) -> id
                and update(collection, id, patch)
            persistence: ProgressPersistence to clear on success (optional)

        Raises:
            TypeError: If record_store lacks insert/update
        """
        for method in ("insert", "update"):
            if not callable(getattr(record_store, method, None)):
                raise TypeError(f"record_store must have callable {method}() method")

        self.flow = flow
        self.record_store = record_store
        self.persistence = persistence
        self.sequencer = StageSequencer(flow)
        self.gating = GatingPolicy(self.sequencer)

    def submit(self, state: FlowRunState, user_id: Optional[str] = None):
        """
        Persist final answers and release the run.

        Args:
            state: Run state on its terminal stage
            user_id: Identity resolved at flow entry (None = anonymous)

        Returns:
            SubmissionAccepted or SubmissionFailed
        """
        if state.flow_id != self.flow.flow_id:
            return SubmissionFailed(reason=f"State belongs to flow '{state.flow_id}'")

        terminal = self.sequencer.terminal_stage(state.answers)
        if state.current_stage != terminal.id or not self.gating.can_advance(terminal.id, state.answers):
            return SubmissionFailed(reason="Flow is not complete")

        if self.flow.requires_identity and user_id is None:
            return SubmissionFailed(reason="Sign-in required", operation='identity_lookup')

        completion = self.flow.completion
        answers = self.effective_answers(state)
        record_id = None

        if user_id is not None:
            if completion.record_builder and completion.collection:
                builder = RECORD_BUILDERS[completion.record_builder]
                record = builder(answers, user_id)
                try:
                    record_id = self.record_store.insert(completion.collection, record)
                except Exception as e:
                    logger.error(f"Record insert into '{completion.collection}' failed: {e}")
                    return SubmissionFailed(reason=str(e) or "Failed to save your responses", operation='insert')

            patch = self._profile_patch(record_id)
            if patch:
                try:
                    self.record_store.update(completion.profile_collection, user_id, patch)
                except Exception as e:
                    logger.error(f"Profile update for user {user_id} failed: {e}")
                    return SubmissionFailed(reason=str(e) or "Failed to update your profile", operation='update')

        if self.persistence is not None:
            self.persistence.clear()

        destination = self.resolve_destination(answers, record_id)
        logger.info(
            f"Flow '{self.flow.flow_id}' submitted (record {record_id}), exiting to {destination}"
        )
        return SubmissionAccepted(record_id=record_id, destination=destination)

    def effective_answers(self, state: FlowRunState) -> Dict[str, Any]:
        """
        Answers without fields owned only by excluded stages.

        Fields not declared on any stage are always kept.
        """
        effective_ids = {stage.id for stage in self.sequencer.effective_sequence(state.answers)}
        owners: Dict[str, set] = {}

        for stage in self.flow.stages:
            for key in stage.fields:
                owners.setdefault(key, set()).add(stage.id)

        return {
            key: value for key, value in state.answers.items()
            if key not in owners or owners[key] & effective_ids
        }

    def resolve_destination(self, answers: Dict[str, Any], record_id: Optional[str]) -> str:
        """Exit destination from the completion spec."""
        destination = self.flow.completion.destination

        if isinstance(destination, dict):
            choice = answers.get(destination.get('from_answer'))
            destination = destination.get('choices', {}).get(choice, destination.get('default', '/'))

        if '{record_id}' in destination:
            destination = destination.replace('{record_id}', record_id or '')

        return destination

    def _profile_patch(self, record_id: Optional[str]) -> Dict[str, Any]:
        patch = {}
        for column, value in self.flow.completion.profile_patch:
            if isinstance(value, str) and '{record_id}' in value:
                if record_id is None:
                    continue
                value = value.replace('{record_id}', record_id)
            patch[column] = value
        return patch
