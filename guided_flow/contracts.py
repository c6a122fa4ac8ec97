"""
Semantic contracts for the guided flow engine.

This module defines immutable data structures shared by the loader,
sequencer, gating policy and controller. They describe the shape of a
flow; they do not enforce rules (validation lives in flow_loader).

Design principles:
- Frozen dataclasses (immutable after creation)
- Tuples instead of lists so a definition can be shared across runs
- No dependencies on other modules

Contents:
- FieldSpec: declared answer field (type, bounds, allowed choices)
- Advisory: warning that holds an advance until acknowledged
- StageDefinition: one logical stage of a flow
- CompletionSpec: what happens at the terminal transition
- FlowDefinition: ordered stages for one guided experience

Usage:
    from guided_flow.contracts import FlowDefinition, StageDefinition
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Tuple, Union


# A predicate is either a DSL dict, the name of a flow-level condition,
# or a plain callable taking the answers mapping.
Predicate = Union[Dict[str, Any], str, Callable[[Dict[str, Any]], bool]]


@dataclass(frozen=True)
class FieldSpec:
    """
    Declared answer field.

    Attributes:
        key: Answer key (e.g. 'selected_subjects')
        type: One of 'text', 'tags', 'choice', 'number', 'boolean'
        max_length: Maximum stored length for text fields (None = unbounded)
        choices: Allowed values for choice fields (and allowed tags, if given)
    """
    key: str
    type: str = "text"
    max_length: Optional[int] = None
    choices: Optional[Tuple[str, ...]] = None


@dataclass(frozen=True)
class Advisory:
    """
    Warning raised on advance when its condition holds.

    The caller shows the warning and re-issues the advance with
    acknowledge_advisory=True to proceed.
    """
    when: Predicate
    code: str
    message: Optional[str] = None


@dataclass(frozen=True)
class StageDefinition:
    """
    Immutable descriptor of one logical stage.

    Attributes:
        id: Stable stage identifier, never a display index
        ordinal: Position within the flow (strictly increasing)
        title: Human-readable label for progress indicators
        group: Optional grouping label (chapter) for stage menus
        include_if: Inclusion predicate; None means always included
        complete_when: Completeness predicate gating forward movement;
            None means always complete
        advisory: Optional advisory checked on advance
        fields: Answer keys collected on this stage
    """
    id: str
    ordinal: int
    title: str = ""
    group: Optional[str] = None
    include_if: Optional[Predicate] = None
    complete_when: Optional[Predicate] = None
    advisory: Optional[Advisory] = None
    fields: Tuple[str, ...] = ()


@dataclass(frozen=True)
class CompletionSpec:
    """
    Terminal handoff configuration.

    Attributes:
        record_builder: Registered builder name (None = no record insert)
        collection: Collection the record is inserted into
        profile_collection: Collection patched with profile_patch
        profile_patch: Column -> value; string values may use {record_id}
        destination: Exit path (may use {record_id}), or a dict with
            'from_answer', 'choices' and 'default' keys
    """
    record_builder: Optional[str] = None
    collection: Optional[str] = None
    profile_collection: str = "profiles"
    profile_patch: Tuple[Tuple[str, Any], ...] = ()
    destination: Any = "/dashboard"


@dataclass(frozen=True)
class FlowDefinition:
    """
    Ordered sequence of stages for one guided experience.

    Shared read-only across all runs of the flow.
    """
    flow_id: str
    stages: Tuple[StageDefinition, ...]
    version: str = "1.0"
    title: str = ""
    storage_key: Optional[str] = None
    requires_identity: bool = False
    signin_destination: str = "/signin"
    fields: Tuple[FieldSpec, ...] = ()
    conditions: Tuple[Tuple[str, Any], ...] = ()
    completion: CompletionSpec = field(default_factory=CompletionSpec)

    @property
    def entry_stage(self) -> StageDefinition:
        return self.stages[0]

    @property
    def progress_key(self) -> str:
        """Flow-scoped key used by progress persistence."""
        return self.storage_key or f"guided_flow:{self.flow_id}"

    def get_stage(self, stage_id: str) -> Optional[StageDefinition]:
        for stage in self.stages:
            if stage.id == stage_id:
                return stage
        return None

    def get_field(self, key: str) -> Optional[FieldSpec]:
        for spec in self.fields:
            if spec.key == key:
                return spec
        return None

    def condition_map(self) -> Dict[str, Any]:
        return dict(self.conditions)
