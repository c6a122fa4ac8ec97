"""
Result types returned by FlowController and FlowSubmitter.

These are the ONLY return types from intent handling. Rejected intents
are reported through results, never raised.
"""

from dataclasses import dataclass
from typing import Optional

from guided_flow.commands import FlowRunState


@dataclass(frozen=True)
class TransitionResult:
    """
    Outcome of an update, retreat, jump, advance or reset intent.

    Attributes:
        state: Flow run state after the intent (unchanged if rejected)
        changed: Whether the intent produced a new state
        can_advance: Gating re-evaluated against the returned state
        reason: Why the intent was rejected (None when accepted)
    """
    state: FlowRunState
    changed: bool
    can_advance: bool
    reason: Optional[str] = None


@dataclass(frozen=True)
class AdvisoryRequired:
    """
    Advance held by a stage advisory.

    State is unchanged. Re-issue Advance(acknowledge_advisory=True)
    to proceed.
    """
    state: FlowRunState
    code: str
    message: Optional[str] = None


@dataclass(frozen=True)
class FlowCompleted:
    """
    Advance issued on the terminal stage of the effective sequence.

    The run stays on its terminal stage; the caller submits and then
    navigates away.
    """
    state: FlowRunState


@dataclass(frozen=True)
class FlowStarted:
    """
    Flow entered.

    Attributes:
        state: Restored or fresh run state
        resumed: True if progress was restored from the durable store
        user_id: Identity resolved at entry (None for anonymous runs)
    """
    state: FlowRunState
    resumed: bool
    user_id: Optional[str] = None


@dataclass(frozen=True)
class RedirectRequired:
    """Flow requires an identified user; send them to destination."""
    destination: str


@dataclass(frozen=True)
class ExternalCallFailed:
    """
    An external collaborator failed during an intent.

    Attributes:
        operation: Which call failed (e.g. 'identity_lookup')
        reason: Human-readable explanation for user-visible messaging
    """
    operation: str
    reason: str


@dataclass(frozen=True)
class SubmissionAccepted:
    """
    Final answers stored remotely; progress cleared.

    Attributes:
        record_id: Id returned by the record store (None if no record)
        destination: Exit destination for navigateTo()
    """
    record_id: Optional[str]
    destination: str


@dataclass(frozen=True)
class SubmissionFailed:
    """
    Submission rejected or an external call failed.

    The run state and persisted progress are untouched so the user can
    retry without losing answers.
    """
    reason: str
    operation: Optional[str] = None
