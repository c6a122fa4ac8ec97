"""
Flow Controller - Single mutation point for a flow run

Responsibilities:
- Receive intents (update answer, toggle tag, advance, retreat, jump, reset)
- Apply the gating policy before every transition
- Keep the current stage inside the effective sequence (clamping)
- Trigger best-effort progress persistence after accepted intents
- Resolve identity once at flow entry

Design principles:
- One controller per active flow run; the rendering layer holds it
- FlowRunState is replaced, never mutated
- Rejected intents return a result with changed=False; nothing is raised
- Sequencer and gating policy stay pure; only this module assigns state

State machine:
- States: effective-sequence stage ids plus an implicit terminal state
- advance: forward, gated by completeness (and advisories)
- retreat: backward, ungated
- jump_to: any effective stage up to the high-water-mark
- terminal: advance() from the last effective stage returns FlowCompleted
"""

import logging
from typing import Any, Optional

from guided_flow.commands import (
    Advance,
    FlowRunState,
    JumpTo,
    ResetFlow,
    Retreat,
    StartFlow,
    ToggleTag,
    UpdateAnswer,
)
from guided_flow.contracts import FlowDefinition
from guided_flow.core.answer_store import AnswerStore, InvalidAnswer
from guided_flow.core.gating_policy import GatingPolicy
from guided_flow.core.stage_sequencer import StageSequencer
from guided_flow.results import (
    AdvisoryRequired,
    ExternalCallFailed,
    FlowCompleted,
    FlowStarted,
    RedirectRequired,
    TransitionResult,
)
from guided_flow.utils.helpers import generate_run_id, utc_now_iso

logger = logging.getLogger(__name__)


class FlowController:
    """
    Orchestrates one run of a flow definition.

    Collaborators:
    - persistence: ProgressPersistence (optional; None disables saving)
    - identity: object with get_current_user() -> user id or None
      (optional; consulted once, in start())
    """

    # Rejection reasons surfaced in TransitionResult.reason
    REASON_INCOMPLETE = "stage_incomplete"
    REASON_AT_FIRST_STAGE = "at_first_stage"
    REASON_NOT_REACHABLE = "stage_not_reachable"
    REASON_INVALID_POSITION = "invalid_position"
    REASON_INVALID_ANSWER = "invalid_answer"

    def __init__(self, flow: FlowDefinition, persistence=None, identity=None):
        """
        Args:
            flow: Validated flow definition
            persistence: ProgressPersistence for this flow, or None
            identity: Identity lookup collaborator, or None

        Raises:
            TypeError: If identity lacks get_current_user()
        """
        if identity is not None and not callable(getattr(identity, 'get_current_user', None)):
            raise TypeError("identity must have callable get_current_user() method")

        self.flow = flow
        self.sequencer = StageSequencer(flow)
        self.gating = GatingPolicy(self.sequencer)
        self.answer_store = AnswerStore(flow.fields)
        self.persistence = persistence
        self.identity = identity

        self.user_id: Optional[str] = None
        self.state: FlowRunState = self.fresh_state()

    # =========================================================================
    # Entry
    # =========================================================================

    def fresh_state(self) -> FlowRunState:
        """Initial run state: entry stage, empty answers."""
        entry = self.flow.entry_stage.id
        return FlowRunState(
            flow_id=self.flow.flow_id,
            current_stage=entry,
            high_water_mark=entry,
            answers={},
            flags={'run_id': generate_run_id(), 'started_at': utc_now_iso()},
        )

    def start(self):
        """
        Enter the flow.

        Looks up identity once, then restores persisted progress or
        starts a fresh run.

        Returns:
            FlowStarted, RedirectRequired or ExternalCallFailed
        """
        if self.identity is not None:
            try:
                self.user_id = self.identity.get_current_user()
            except Exception as e:
                logger.error(f"Identity lookup failed for flow '{self.flow.flow_id}': {e}")
                if self.flow.requires_identity:
                    return ExternalCallFailed(operation='identity_lookup', reason=str(e))
                self.user_id = None

        if self.flow.requires_identity and self.user_id is None:
            logger.info(f"Flow '{self.flow.flow_id}' requires sign-in, redirecting")
            return RedirectRequired(destination=self.flow.signin_destination)

        restored = self.persistence.load() if self.persistence is not None else None

        if restored is not None:
            self.state = self._normalize(restored)
            logger.info(
                f"Flow '{self.flow.flow_id}' resumed at '{self.state.current_stage}' "
                f"(high-water-mark '{self.state.high_water_mark}')"
            )
            return FlowStarted(state=self.state, resumed=True, user_id=self.user_id)

        self.state = self.fresh_state()
        logger.info(f"Flow '{self.flow.flow_id}' started (run {self.state.flags.get('run_id')})")
        return FlowStarted(state=self.state, resumed=False, user_id=self.user_id)

    # =========================================================================
    # Intents
    # =========================================================================

    def handle(self, command):
        """
        Dispatch a command to its intent method.

        Raises:
            TypeError: If command is not a known command type
        """
        if isinstance(command, StartFlow):
            return self.start()
        if isinstance(command, UpdateAnswer):
            return self.update_answer(command.key, command.value)
        if isinstance(command, ToggleTag):
            return self.toggle_tag(command.key, command.tag)
        if isinstance(command, Advance):
            return self.advance(acknowledge_advisory=command.acknowledge_advisory)
        if isinstance(command, Retreat):
            return self.retreat()
        if isinstance(command, JumpTo):
            if command.stage_id is not None:
                return self.jump_to(command.stage_id)
            return self.jump_to_position(command.position)
        if isinstance(command, ResetFlow):
            return self.reset()

        raise TypeError(f"Unknown command type: {type(command).__name__}")

    def update_answer(self, key: str, value: Any) -> TransitionResult:
        """Set one answer field, then re-clamp the current stage."""
        try:
            answers = self.answer_store.apply(self.state.answers, key, value)
        except InvalidAnswer as e:
            return self._reject(self.REASON_INVALID_ANSWER, str(e))

        return self._apply_answers(answers)

    def toggle_tag(self, key: str, tag: str) -> TransitionResult:
        """Add or remove a tag, then re-clamp the current stage."""
        try:
            answers = self.answer_store.toggle(self.state.answers, key, tag)
        except InvalidAnswer as e:
            return self._reject(self.REASON_INVALID_ANSWER, str(e))

        return self._apply_answers(answers)

    def advance(self, acknowledge_advisory: bool = False):
        """
        Move to the next effective stage.

        Returns:
            TransitionResult, AdvisoryRequired, or FlowCompleted when
            issued on the terminal stage
        """
        current = self.state.current_stage
        answers = self.state.answers

        if not self.gating.can_advance(current, answers):
            return self._reject(self.REASON_INCOMPLETE, f"Stage '{current}' is not complete")

        advisory = self.gating.pending_advisory(current, answers)
        if advisory is not None and not acknowledge_advisory:
            logger.info(f"Advance from '{current}' held by advisory '{advisory.code}'")
            return AdvisoryRequired(state=self.state, code=advisory.code, message=advisory.message)

        next_stage = self.sequencer.next_stage(current, answers)
        if next_stage is None:
            logger.info(f"Flow '{self.flow.flow_id}' completed at '{current}'")
            return FlowCompleted(state=self.state)

        high_water_mark = self.state.high_water_mark
        if next_stage.ordinal > self.sequencer.ordinal_of(high_water_mark):
            high_water_mark = next_stage.id

        return self._commit(self.state.evolve(
            current_stage=next_stage.id,
            high_water_mark=high_water_mark,
        ))

    def retreat(self) -> TransitionResult:
        """Move to the previous effective stage (always allowed past entry)."""
        previous = self.sequencer.previous_stage(self.state.current_stage, self.state.answers)
        if previous is None:
            return self._reject(self.REASON_AT_FIRST_STAGE, "Already at the first stage")

        return self._commit(self.state.evolve(current_stage=previous.id))

    def jump_to(self, stage_id: str) -> TransitionResult:
        """Jump to an effective stage not past the high-water-mark."""
        if not self.gating.can_navigate_to(stage_id, self.state.high_water_mark, self.state.answers):
            return self._reject(self.REASON_NOT_REACHABLE, f"Stage '{stage_id}' is not reachable")

        if stage_id == self.state.current_stage:
            return self._unchanged()

        return self._commit(self.state.evolve(current_stage=stage_id))

    def jump_to_position(self, position: int) -> TransitionResult:
        """Jump by 1-based display position (progress indicator click)."""
        stage_id = self.sequencer.display_to_logical(self.effective_sequence(), position)
        if stage_id is None:
            return self._reject(self.REASON_INVALID_POSITION, f"No stage at position {position!r}")

        return self.jump_to(stage_id)

    def reset(self) -> TransitionResult:
        """Abandon the run: clear persisted progress and start fresh."""
        if self.persistence is not None:
            self.persistence.clear()

        self.state = self.fresh_state()
        logger.info(f"Flow '{self.flow.flow_id}' reset")
        return TransitionResult(state=self.state, changed=True, can_advance=self.can_advance())

    # =========================================================================
    # Queries
    # =========================================================================

    def can_advance(self) -> bool:
        return self.gating.can_advance(self.state.current_stage, self.state.answers)

    def can_navigate_to(self, stage_id: str) -> bool:
        return self.gating.can_navigate_to(stage_id, self.state.high_water_mark, self.state.answers)

    def effective_sequence(self):
        return self.sequencer.effective_sequence(self.state.answers)

    def display_position(self) -> int:
        return self.sequencer.logical_to_display(self.effective_sequence(), self.state.current_stage)

    def total_stages(self) -> int:
        return len(self.effective_sequence())

    def is_terminal(self) -> bool:
        return self.sequencer.next_stage(self.state.current_stage, self.state.answers) is None

    # =========================================================================
    # Internals
    # =========================================================================

    def _normalize(self, state: FlowRunState) -> FlowRunState:
        """Clamp the current stage into the effective sequence."""
        current = self.sequencer.clamp(state.current_stage, state.answers)
        if current == state.current_stage:
            return state
        logger.info(f"Stage '{state.current_stage}' no longer effective, moved to '{current}'")
        return state.evolve(current_stage=current)

    def _apply_answers(self, answers) -> TransitionResult:
        if answers == self.state.answers:
            return self._unchanged()

        return self._commit(self._normalize(self.state.evolve(answers=answers)))

    def _commit(self, state: FlowRunState) -> TransitionResult:
        self.state = state

        if self.persistence is not None:
            self.persistence.save(state)

        return TransitionResult(state=state, changed=True, can_advance=self.can_advance())

    def _unchanged(self) -> TransitionResult:
        return TransitionResult(state=self.state, changed=False, can_advance=self.can_advance())

    def _reject(self, reason: str, detail: str) -> TransitionResult:
        logger.debug(f"Intent rejected on '{self.state.current_stage}': {detail}")
        return TransitionResult(
            state=self.state,
            changed=False,
            can_advance=self.can_advance(),
            reason=reason,
        )
