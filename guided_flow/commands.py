"""
Flow run state and intent commands for FlowController control flow.

Commands are the public vocabulary of the FlowController: a rendering
layer builds one of these per user action and passes it to handle().
"""

from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class FlowRunState:
    """
    Immutable snapshot of one user's progress through one flow.

    Rules:
    - Only FlowController produces new instances (via evolve())
    - answers is never mutated in place; every update builds a new dict
    - high_water_mark is the furthest logical stage ever reached
    - flags holds flow-scoped auxiliary data (run id, start time)
    """
    flow_id: str
    current_stage: str
    high_water_mark: str
    answers: Dict[str, Any] = field(default_factory=dict)
    flags: Dict[str, Any] = field(default_factory=dict)

    def evolve(self, **changes) -> "FlowRunState":
        """Return a copy with the given attributes replaced."""
        return replace(self, **changes)

    def answer(self, key: str, default: Any = None) -> Any:
        return self.answers.get(key, default)


# Command types

@dataclass(frozen=True)
class StartFlow:
    """
    Enter the flow: identity check, then resume or create a run.

    Returns: FlowStarted, RedirectRequired or ExternalCallFailed.
    """
    pass


@dataclass(frozen=True)
class UpdateAnswer:
    """Set one answer field."""
    key: str
    value: Any


@dataclass(frozen=True)
class ToggleTag:
    """Add or remove one tag from a multi-select field."""
    key: str
    tag: str


@dataclass(frozen=True)
class Advance:
    """Move to the next effective stage (gated)."""
    acknowledge_advisory: bool = False


@dataclass(frozen=True)
class Retreat:
    """Move to the previous effective stage (ungated)."""
    pass


@dataclass(frozen=True)
class JumpTo:
    """
    Jump to a stage by logical id or by 1-based display position.

    Exactly one of stage_id / position should be given.
    """
    stage_id: Optional[str] = None
    position: Optional[int] = None


@dataclass(frozen=True)
class ResetFlow:
    """Abandon the run: clear persisted progress and start over."""
    pass


# Command union type for type hints
Command = StartFlow | UpdateAnswer | ToggleTag | Advance | Retreat | JumpTo | ResetFlow
