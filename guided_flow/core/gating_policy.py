"""
Gating Policy - Forward-progress and navigation decisions

Two decisions, both pure:
- can_advance: the current stage's completeness predicate holds
- can_navigate_to: the target is effective and not past the
  high-water-mark

The controller re-checks both on every intent; affordances disabled by
a rendering layer are never trusted.
"""

from typing import Any, Dict, Optional

from guided_flow.contracts import Advisory
from guided_flow.core.stage_sequencer import StageSequencer


class GatingPolicy:
    """Gating decisions for one flow definition."""

    def __init__(self, sequencer: StageSequencer):
        self.sequencer = sequencer
        self.flow = sequencer.flow
        self.evaluator = sequencer.evaluator

    def can_advance(self, stage_id: str, answers: Dict[str, Any]) -> bool:
        """
        True iff stage_id's completeness predicate holds over answers.

        Unknown stages never advance.
        """
        stage = self.flow.get_stage(stage_id)
        if stage is None:
            return False
        return self.evaluator.evaluate(stage.complete_when, answers)

    def pending_advisory(self, stage_id: str, answers: Dict[str, Any]) -> Optional[Advisory]:
        """Advisory that holds an advance from stage_id, if any."""
        stage = self.flow.get_stage(stage_id)
        if stage is None or stage.advisory is None:
            return None
        if self.evaluator.evaluate(stage.advisory.when, answers):
            return stage.advisory
        return None

    def effective_high_water_mark(self, high_water_mark: str, answers: Dict[str, Any]) -> str:
        """High-water-mark clamped to the effective sequence."""
        return self.sequencer.clamp(high_water_mark, answers)

    def can_navigate_to(self, target_id: str, high_water_mark: str, answers: Dict[str, Any]) -> bool:
        """
        True iff target is effective and its ordinal is <= the
        high-water-mark's ordinal.
        """
        if self.flow.get_stage(target_id) is None:
            return False

        if not self.sequencer.is_effective(target_id, answers):
            return False

        limit = self.effective_high_water_mark(high_water_mark, answers)
        return self.sequencer.ordinal_of(target_id) <= self.sequencer.ordinal_of(limit)
