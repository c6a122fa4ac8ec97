"""
Stage Sequencer - Effective sequence and display numbering

Responsibilities:
- Compute the effective sequence (stages whose inclusion predicate holds)
- Map logical stage ids to contiguous 1-based display positions and back
- Clamp a stage to the nearest effective stage at or before it

Design principles:
- Stateless with respect to runs: answers come in as parameters
- One cached effective sequence per distinct answers content
- Stage ids are the only addressing scheme; raw indices never leak out

CRITICAL: Display position vs ordinal
- ordinal: fixed position in the flow definition (gaps allowed)
- display position: 1..N over the effective sequence, no gaps
- Never compare display positions across different answers
"""

import logging
from typing import Any, Dict, Optional, Tuple

from guided_flow.contracts import FlowDefinition, StageDefinition
from guided_flow.core.condition_evaluator import ConditionEvaluator

logger = logging.getLogger(__name__)


EffectiveSequence = Tuple[StageDefinition, ...]


def _freeze(value: Any) -> Any:
    """Hashable fingerprint of an answer value."""
    if isinstance(value, dict):
        return ("dict", tuple(sorted((k, _freeze(v)) for k, v in value.items())))
    if isinstance(value, (list, tuple)):
        return ("list", tuple(_freeze(v) for v in value))
    if isinstance(value, (set, frozenset)):
        return ("set", frozenset(_freeze(v) for v in value))
    # True == 1 must not share a cache entry
    return (type(value).__name__, value)


class StageSequencer:
    """Computes effective sequences for one flow definition."""

    def __init__(self, flow: FlowDefinition, evaluator: Optional[ConditionEvaluator] = None):
        """
        Args:
            flow: Flow definition (shared, read-only)
            evaluator: Condition evaluator for the flow's named conditions
        """
        self.flow = flow
        self.evaluator = evaluator or ConditionEvaluator(flow.condition_map())
        self._ordinals = {stage.id: stage.ordinal for stage in flow.stages}
        self._cache_key = None
        self._cache_value: EffectiveSequence = ()

    # =========================================================================
    # Effective sequence
    # =========================================================================

    def effective_sequence(self, answers: Dict[str, Any]) -> EffectiveSequence:
        """
        Ordered stages whose inclusion predicate holds for answers.

        The first stage is always included. Result is cached until the
        answers content changes.
        """
        try:
            key = _freeze(answers)
            hash(key)
        except TypeError:
            key = None

        if key is not None and key == self._cache_key:
            return self._cache_value

        sequence = tuple(
            stage for index, stage in enumerate(self.flow.stages)
            if index == 0 or self.evaluator.evaluate(stage.include_if, answers)
        )

        if key is not None:
            self._cache_key = key
            self._cache_value = sequence

        return sequence

    def is_effective(self, stage_id: str, answers: Dict[str, Any]) -> bool:
        return any(stage.id == stage_id for stage in self.effective_sequence(answers))

    def ordinal_of(self, stage_id: str) -> int:
        """
        Ordinal of a stage in the flow definition.

        Raises:
            KeyError: If stage_id is not part of the flow
        """
        return self._ordinals[stage_id]

    # =========================================================================
    # Position mapping
    # =========================================================================

    @staticmethod
    def logical_to_display(sequence: EffectiveSequence, stage_id: str) -> Optional[int]:
        """
        1-based display position of stage_id within sequence.

        Returns:
            int or None if the stage is not in the effective sequence
        """
        for position, stage in enumerate(sequence, start=1):
            if stage.id == stage_id:
                return position
        return None

    @staticmethod
    def display_to_logical(sequence: EffectiveSequence, position: int) -> Optional[str]:
        """
        Logical stage id at 1-based display position.

        Returns:
            str or None if position is out of range
        """
        if isinstance(position, bool) or not isinstance(position, int):
            return None
        if position < 1 or position > len(sequence):
            return None
        return sequence[position - 1].id

    # =========================================================================
    # Neighbours and clamping
    # =========================================================================

    def next_stage(self, stage_id: str, answers: Dict[str, Any]) -> Optional[StageDefinition]:
        """Next effective stage after stage_id (None at the terminal stage)."""
        ordinal = self.ordinal_of(stage_id)
        for stage in self.effective_sequence(answers):
            if stage.ordinal > ordinal:
                return stage
        return None

    def previous_stage(self, stage_id: str, answers: Dict[str, Any]) -> Optional[StageDefinition]:
        """Previous effective stage before stage_id (None at the first stage)."""
        ordinal = self.ordinal_of(stage_id)
        previous = None
        for stage in self.effective_sequence(answers):
            if stage.ordinal >= ordinal:
                break
            previous = stage
        return previous

    def clamp(self, stage_id: str, answers: Dict[str, Any]) -> str:
        """
        Nearest effective stage at or before stage_id's ordinal.

        The entry stage is always effective, so a result always exists.
        Unknown ids clamp to the entry stage.
        """
        ordinal = self._ordinals.get(stage_id)
        sequence = self.effective_sequence(answers)

        if ordinal is None:
            logger.warning(f"Unknown stage '{stage_id}' clamped to entry stage")
            return sequence[0].id

        clamped = sequence[0]
        for stage in sequence:
            if stage.ordinal > ordinal:
                break
            clamped = stage

        if clamped.id != stage_id:
            logger.debug(f"Stage '{stage_id}' not effective, clamped to '{clamped.id}'")

        return clamped.id

    def terminal_stage(self, answers: Dict[str, Any]) -> StageDefinition:
        return self.effective_sequence(answers)[-1]
