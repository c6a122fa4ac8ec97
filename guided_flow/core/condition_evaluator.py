"""
Condition Evaluator - Stateless predicate evaluation over flow answers

Responsibilities:
- Evaluate stage inclusion and completeness predicates
- Resolve named conditions declared by a flow
- Report unknown operators and dangling condition references

Design principles:
- Stateless: all answers come from the answers parameter
- Deterministic: same answers always produce the same result
- Pure functions: no side effects, no mutation of answers
- Missing fields mean "condition not met" (except ne)

Predicates may be a DSL dict, the name of a flow condition, or a
callable taking the answers mapping.
"""

import logging
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


KNOWN_OPERATORS = {
    "all", "any", "not", "condition",
    "eq", "ne", "is_true", "is_false",
    "exists", "filled",
    "contains", "contains_any", "contains_lower", "any_contains_lower",
    "gte", "gt", "lte", "lt",
}


def is_filled(value: Any) -> bool:
    """True if value is present and non-empty (string or collection)."""
    if value is None:
        return False
    if isinstance(value, str):
        return value.strip() != ""
    if isinstance(value, (list, tuple, set, frozenset, dict)):
        return len(value) > 0
    return True


KEY_OPERATORS = {"is_true", "is_false", "exists", "filled", "condition"}
PAIR_OPERATORS = {
    "eq", "ne", "contains", "contains_lower",
    "contains_any", "any_contains_lower",
    "gte", "gt", "lte", "lt",
}
LIST_PAIR_OPERATORS = {"contains_any", "any_contains_lower"}
NUMERIC_OPERATORS = {"gte", "gt", "lte", "lt"}


def _operand_error(operator: str, operand: Any) -> Optional[str]:
    """Describe a malformed operand, or None if its shape is valid."""
    if operator in ("all", "any"):
        if not isinstance(operand, (list, tuple)):
            return "expects a list of predicates"
        return None

    if operator in KEY_OPERATORS:
        if not isinstance(operand, str):
            return "expects a field or condition name"
        return None

    if operator in PAIR_OPERATORS:
        if not isinstance(operand, (list, tuple)) or len(operand) != 2:
            return "expects [field, value]"
        if not isinstance(operand[0], str):
            return "expects a field name first"
        value = operand[1]
        if operator in LIST_PAIR_OPERATORS and not isinstance(value, (list, tuple)):
            return "expects a list of values"
        if operator in NUMERIC_OPERATORS and (isinstance(value, bool) or not isinstance(value, (int, float))):
            return "expects a numeric threshold"
        if operator in ("contains", "contains_lower") and not isinstance(value, str):
            return "expects a string value"

    return None


def _references(predicate: Any) -> List[str]:
    """Named conditions a predicate refers to directly."""
    if isinstance(predicate, str):
        return [predicate]
    if not isinstance(predicate, dict):
        return []

    refs = []
    for operator, operand in predicate.items():
        if operator in ("all", "any") and isinstance(operand, (list, tuple)):
            for sub in operand:
                refs.extend(_references(sub))
        elif operator == "not":
            refs.extend(_references(operand))
        elif operator == "condition" and isinstance(operand, str):
            refs.append(operand)
    return refs


def _as_tags(value: Any) -> Optional[frozenset]:
    if isinstance(value, (set, frozenset, list, tuple)):
        return frozenset(value)
    return None


class ConditionEvaluator:
    """
    Evaluates predicates against an answers mapping.

    Holds only the flow's named conditions (read-only). Does not track
    any per-run state.
    """

    def __init__(self, conditions: Optional[Dict[str, Any]] = None):
        """
        Args:
            conditions: Named condition DSLs declared by the flow
        """
        self.conditions = dict(conditions or {})

    # =========================================================================
    # Public API
    # =========================================================================

    def evaluate(self, predicate: Any, answers: Dict[str, Any]) -> bool:
        """
        Evaluate a predicate.

        Args:
            predicate: DSL dict, condition name, callable, or None
            answers: Current answers mapping

        Returns:
            bool: Evaluation result (None predicate is vacuously true)
        """
        if predicate is None:
            return True

        if callable(predicate):
            return bool(predicate(answers))

        if isinstance(predicate, str):
            return self.evaluate_condition(predicate, answers)

        return self._evaluate_dsl(predicate, answers)

    def evaluate_condition(self, condition_name: str, answers: Dict[str, Any]) -> bool:
        """
        Evaluate a named flow condition.

        Unknown names log a warning and evaluate to False.
        """
        condition_def = self.conditions.get(condition_name)

        if condition_def is None:
            logger.warning(f"Unknown condition: {condition_name}")
            return False

        return self._evaluate_dsl(condition_def, answers)

    def validate(self, predicate: Any, path: str = "predicate") -> List[str]:
        """
        Collect structural problems in a predicate.

        Args:
            predicate: Predicate to check
            path: Location label used in error messages

        Returns:
            list[str]: Problems found (empty if valid)
        """
        errors = []

        if predicate is None or callable(predicate):
            return errors

        if isinstance(predicate, str):
            if predicate not in self.conditions:
                errors.append(f"{path} references undefined condition '{predicate}'")
            return errors

        if not isinstance(predicate, dict):
            errors.append(f"{path} must be a dict, condition name or callable")
            return errors

        for operator, operand in predicate.items():
            if operator not in KNOWN_OPERATORS:
                errors.append(f"{path} uses unknown operator '{operator}'")
                continue

            shape_error = _operand_error(operator, operand)
            if shape_error:
                errors.append(f"{path}.{operator} {shape_error}")
                continue

            if operator in ("all", "any"):
                for i, sub in enumerate(operand):
                    errors.extend(self.validate(sub, f"{path}.{operator}[{i}]"))
            elif operator == "not":
                errors.extend(self.validate(operand, f"{path}.not"))
            elif operator == "condition":
                if operand not in self.conditions:
                    errors.append(f"{path} references undefined condition '{operand}'")

        return errors

    def find_cycles(self) -> List[str]:
        """
        Report named conditions that reach themselves through references.

        Returns:
            list[str]: One message per cycle found (empty if none)
        """
        errors = []
        done = set()

        def visit(name, trail):
            if name in trail:
                cycle = trail[trail.index(name):] + [name]
                errors.append(f"condition cycle: {' -> '.join(cycle)}")
                return
            if name in done or name not in self.conditions:
                return
            for ref in _references(self.conditions[name]):
                visit(ref, trail + [name])
            done.add(name)

        for name in self.conditions:
            visit(name, [])

        return errors

    # =========================================================================
    # DSL Evaluation
    # =========================================================================

    def _evaluate_dsl(self, dsl: dict, answers: Dict[str, Any]) -> bool:
        """
        Evaluate DSL condition structure.

        Args:
            dsl: DSL condition dict
            answers: Current answers mapping

        Returns:
            bool: Evaluation result
        """
        if not dsl:
            return True  # Empty condition is vacuously true

        # Logical operators
        if "all" in dsl:
            conditions = dsl["all"]
            if not conditions:
                return True
            return all(self.evaluate(sub, answers) for sub in conditions)

        if "any" in dsl:
            conditions = dsl["any"]
            if not conditions:
                return False
            return any(self.evaluate(sub, answers) for sub in conditions)

        if "not" in dsl:
            return not self.evaluate(dsl["not"], answers)

        if "condition" in dsl:
            return self.evaluate_condition(dsl["condition"], answers)

        # Comparison operators
        if "eq" in dsl:
            key, expected = dsl["eq"]
            return answers.get(key) == expected

        if "ne" in dsl:
            key, expected = dsl["ne"]
            return answers.get(key) != expected

        # Boolean operators
        if "is_true" in dsl:
            return answers.get(dsl["is_true"]) is True

        if "is_false" in dsl:
            return answers.get(dsl["is_false"]) is False

        # Presence operators
        if "exists" in dsl:
            key = dsl["exists"]
            return key in answers and answers[key] is not None

        if "filled" in dsl:
            return is_filled(answers.get(dsl["filled"]))

        # Tag operators
        if "contains" in dsl:
            key, tag = dsl["contains"]
            tags = _as_tags(answers.get(key))
            return tags is not None and tag in tags

        if "contains_any" in dsl:
            key, candidates = dsl["contains_any"]
            tags = _as_tags(answers.get(key))
            return tags is not None and not tags.isdisjoint(candidates)

        if "any_contains_lower" in dsl:
            key, substrings = dsl["any_contains_lower"]
            value = answers.get(key)
            if isinstance(value, str):
                values = [value]
            else:
                tags = _as_tags(value)
                if tags is None:
                    return False
                values = [v for v in tags if isinstance(v, str)]
            return any(
                sub.lower() in v.lower()
                for v in values
                for sub in substrings
            )

        # String operator
        if "contains_lower" in dsl:
            key, substring = dsl["contains_lower"]
            value = answers.get(key)
            if not isinstance(value, str):
                return False
            return substring.lower() in value.lower()

        # Numeric comparison operators
        for operator, compare in (
            ("gte", lambda a, b: a >= b),
            ("gt", lambda a, b: a > b),
            ("lte", lambda a, b: a <= b),
            ("lt", lambda a, b: a < b),
        ):
            if operator in dsl:
                key, threshold = dsl[operator]
                value = answers.get(key)
                if value is None or isinstance(value, bool):
                    return False
                try:
                    return compare(float(value), float(threshold))
                except (TypeError, ValueError):
                    return False

        # Unknown operator
        logger.warning(f"Unknown DSL operator: {list(dsl.keys())}")
        return False
