"""
Flow Loader - Build and validate flow definitions

Responsibilities:
- Load flow definition JSON files shipped in guided_flow/flows
- Convert them into immutable FlowDefinition contracts
- Validate definitions on load (fail fast)

Validation covers every flow, including ones built in code, so a bad
definition is caught before any run starts.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from guided_flow.contracts import (
    Advisory,
    CompletionSpec,
    FieldSpec,
    FlowDefinition,
    StageDefinition,
)
from guided_flow.core.condition_evaluator import ConditionEvaluator
from guided_flow.utils.record_builders import RECORD_BUILDERS

logger = logging.getLogger(__name__)


FLOWS_DIR = Path(__file__).resolve().parent.parent / "flows"

FIELD_TYPES = {"text", "tags", "choice", "number", "boolean"}


def available_flows(flows_dir: Optional[Union[str, Path]] = None) -> List[str]:
    """List flow ids available in flows_dir (sorted)."""
    directory = Path(flows_dir) if flows_dir else FLOWS_DIR
    return sorted(p.stem for p in directory.glob("*.json"))


def load_flow(flow_id: str, flows_dir: Optional[Union[str, Path]] = None) -> FlowDefinition:
    """
    Load and validate a flow definition by id.

    Args:
        flow_id: File stem under flows_dir (e.g. 'explore_journey')
        flows_dir: Override directory (defaults to FLOWS_DIR)

    Returns:
        FlowDefinition: Validated, immutable definition

    Raises:
        FileNotFoundError: If the flow file doesn't exist
        ValueError: If the definition is invalid
    """
    directory = Path(flows_dir) if flows_dir else FLOWS_DIR
    path = directory / f"{flow_id}.json"

    if not path.exists():
        raise FileNotFoundError(f"Flow definition not found: {path}")

    with open(path, 'r', encoding='utf-8') as f:
        data = json.load(f)

    flow = build_flow(data)

    if flow.flow_id != flow_id:
        raise ValueError(f"Flow file '{path.name}' declares flow_id '{flow.flow_id}'")

    logger.info(f"Flow '{flow.flow_id}' loaded with {len(flow.stages)} stages (version {flow.version})")
    return flow


def build_flow(data: Dict[str, Any]) -> FlowDefinition:
    """
    Build a FlowDefinition from its JSON form and validate it.

    Raises:
        ValueError: If required keys are missing or validation fails
    """
    if not isinstance(data, dict):
        raise ValueError("Flow definition must be a JSON object")

    if "flow_id" not in data:
        raise ValueError("Flow definition missing 'flow_id'")

    fields = tuple(
        FieldSpec(
            key=key,
            type=spec.get("type", "text"),
            max_length=spec.get("max_length"),
            choices=tuple(spec["choices"]) if spec.get("choices") is not None else None,
        )
        for key, spec in data.get("fields", {}).items()
    )

    stages = tuple(_build_stage(raw, index) for index, raw in enumerate(data.get("stages", [])))

    completion_data = data.get("completion", {})
    completion = CompletionSpec(
        record_builder=completion_data.get("record_builder"),
        collection=completion_data.get("collection"),
        profile_collection=completion_data.get("profile_collection", "profiles"),
        profile_patch=tuple(completion_data.get("profile_patch", {}).items()),
        destination=completion_data.get("destination", "/dashboard"),
    )

    flow = FlowDefinition(
        flow_id=data["flow_id"],
        stages=stages,
        version=str(data.get("version", "1.0")),
        title=data.get("title", ""),
        storage_key=data.get("storage_key"),
        requires_identity=bool(data.get("requires_identity", False)),
        signin_destination=data.get("signin_destination", "/signin"),
        fields=fields,
        conditions=tuple(data.get("conditions", {}).items()),
        completion=completion,
    )

    validate_flow(flow)
    return flow


def _build_stage(raw: Dict[str, Any], index: int) -> StageDefinition:
    if "id" not in raw:
        raise ValueError(f"Stage at index {index} missing 'id'")

    advisory = None
    if raw.get("advisory"):
        advisory = Advisory(
            when=raw["advisory"].get("when"),
            code=raw["advisory"].get("code", ""),
            message=raw["advisory"].get("message"),
        )

    return StageDefinition(
        id=raw["id"],
        ordinal=raw.get("ordinal", index),
        title=raw.get("title", ""),
        group=raw.get("group"),
        include_if=raw.get("include_if"),
        complete_when=raw.get("complete_when"),
        advisory=advisory,
        fields=tuple(raw.get("fields", [])),
    )


def validate_flow(flow: FlowDefinition) -> None:
    """
    Validate flow structure.

    Checks:
    - At least one stage
    - Stage ids unique, ordinals strictly increasing
    - First stage has no inclusion predicate
    - Predicates reference defined conditions and known operators
    - Operands have the shape their operator expects
    - Named conditions do not refer back to themselves
    - Advisories carry a code
    - Stage field references are declared, field types are known
    - Completion record builder is registered

    Raises:
        ValueError: If validation fails (all problems listed)
    """
    errors = []
    evaluator = ConditionEvaluator(flow.condition_map())

    if not flow.stages:
        errors.append("Flow has no stages")
    elif flow.stages[0].include_if is not None:
        errors.append(f"Entry stage '{flow.stages[0].id}' must not have an inclusion predicate")

    for name, dsl in flow.conditions:
        errors.extend(evaluator.validate(dsl, f"condition '{name}'"))
    errors.extend(evaluator.find_cycles())

    declared_fields = set()
    for spec in flow.fields:
        declared_fields.add(spec.key)
        if spec.type not in FIELD_TYPES:
            errors.append(f"Field '{spec.key}' has unknown type '{spec.type}'")
        if spec.type == "choice" and not spec.choices:
            errors.append(f"Choice field '{spec.key}' declares no choices")

    seen_ids = set()
    previous_ordinal = None

    for stage in flow.stages:
        if stage.id in seen_ids:
            errors.append(f"Duplicate stage id '{stage.id}'")
        seen_ids.add(stage.id)

        if previous_ordinal is not None and stage.ordinal <= previous_ordinal:
            errors.append(
                f"Stage '{stage.id}' ordinal {stage.ordinal} is not greater than {previous_ordinal}"
            )
        previous_ordinal = stage.ordinal

        errors.extend(evaluator.validate(stage.include_if, f"stage '{stage.id}' include_if"))
        errors.extend(evaluator.validate(stage.complete_when, f"stage '{stage.id}' complete_when"))

        if stage.advisory is not None:
            if not stage.advisory.code:
                errors.append(f"Stage '{stage.id}' advisory missing 'code'")
            errors.extend(evaluator.validate(stage.advisory.when, f"stage '{stage.id}' advisory"))

        for key in stage.fields:
            if key not in declared_fields:
                errors.append(f"Stage '{stage.id}' references undeclared field '{key}'")

    builder = flow.completion.record_builder
    if builder is not None and builder not in RECORD_BUILDERS:
        errors.append(f"Completion references unknown record builder '{builder}'")

    if errors:
        error_msg = f"Flow '{flow.flow_id}' validation failed:\n  - " + "\n  - ".join(errors)
        raise ValueError(error_msg)
