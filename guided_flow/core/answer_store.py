"""
Answer Store - Field coercion and serialization for flow answers

Responsibilities:
- Apply discrete field updates to an answers mapping
- Coerce values according to declared field specs
- Serialize answers to JSON-safe dicts and back

Design principles:
- Dumb container: no gating, no branching logic
- Never mutates an answers mapping in place; every update returns a new dict
- Tag collections are stored as frozensets (unordered, hashable)
- Undeclared keys are stored as given

CRITICAL: Tags vs lists
- Declared 'tags' fields always hold frozensets, whatever the caller sent
- Serialization writes tags as sorted lists and records their keys in
  'tag_keys' so deserialization restores frozensets exactly
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from guided_flow.contracts import FieldSpec

logger = logging.getLogger(__name__)


class InvalidAnswer(ValueError):
    """Value cannot be stored for a declared field."""


class AnswerStore:
    """Applies field updates using a flow's declared field specs."""

    TAG_TYPES = {"tags"}

    def __init__(self, fields: Iterable[FieldSpec] = ()):
        """
        Args:
            fields: Declared field specs for the flow
        """
        self.fields: Dict[str, FieldSpec] = {spec.key: spec for spec in fields}

    # ========================
    # Updates
    # ========================

    def apply(self, answers: Dict[str, Any], key: str, value: Any) -> Dict[str, Any]:
        """
        Return a new answers mapping with key set to value.

        Args:
            answers: Current answers (not modified)
            key: Field key
            value: Raw value from the caller

        Returns:
            dict: New answers mapping

        Raises:
            InvalidAnswer: If value is not acceptable for a declared field
        """
        if not key:
            raise InvalidAnswer("Answer key must be a non-empty string")

        coerced = self.coerce(key, value)
        updated = dict(answers)
        updated[key] = coerced
        return updated

    def toggle(self, answers: Dict[str, Any], key: str, tag: str) -> Dict[str, Any]:
        """
        Return a new answers mapping with tag added to or removed from key.

        Raises:
            InvalidAnswer: If key is declared with a non-tag type or tag
                is not one of the declared choices
        """
        spec = self.fields.get(key)
        if spec is not None and spec.type not in self.TAG_TYPES:
            raise InvalidAnswer(f"Field '{key}' is not a tag field")

        current = answers.get(key)
        tags = frozenset(current) if isinstance(current, (set, frozenset, list, tuple)) else frozenset()

        if tag in tags:
            tags = tags - {tag}
        else:
            tags = tags | {tag}

        return self.apply(answers, key, tags)

    def coerce(self, key: str, value: Any) -> Any:
        """
        Coerce a raw value according to the field's declared type.

        Undeclared keys: sets become frozensets, tuples become lists,
        everything else is kept.
        """
        spec = self.fields.get(key)

        if spec is None:
            if isinstance(value, set):
                return frozenset(value)
            if isinstance(value, tuple):
                return list(value)
            return value

        if value is None:
            return frozenset() if spec.type in self.TAG_TYPES else None

        if spec.type == "text":
            text = str(value).strip()
            if spec.max_length is not None and len(text) > spec.max_length:
                logger.debug(f"Truncating '{key}' to {spec.max_length} characters")
                text = text[:spec.max_length]
            return text

        if spec.type in self.TAG_TYPES:
            if isinstance(value, str):
                value = [value]
            if not isinstance(value, (set, frozenset, list, tuple)):
                raise InvalidAnswer(f"Field '{key}' expects a collection of tags")
            tags = frozenset(str(v) for v in value)
            if spec.choices is not None:
                unknown = tags - set(spec.choices)
                if unknown:
                    raise InvalidAnswer(f"Field '{key}' has unknown tags: {sorted(unknown)}")
            return tags

        if spec.type == "choice":
            if spec.choices is not None and value not in spec.choices:
                raise InvalidAnswer(f"Field '{key}' does not accept '{value}'")
            return value

        if spec.type == "number":
            if isinstance(value, bool):
                raise InvalidAnswer(f"Field '{key}' expects a number")
            if isinstance(value, (int, float)):
                return value
            try:
                number = float(str(value).strip())
            except ValueError:
                raise InvalidAnswer(f"Field '{key}' expects a number")
            return int(number) if number.is_integer() else number

        if spec.type == "boolean":
            if not isinstance(value, bool):
                raise InvalidAnswer(f"Field '{key}' expects true or false")
            return value

        return value

    # ========================
    # Serialization
    # ========================

    @staticmethod
    def to_json(answers: Dict[str, Any]) -> Tuple[Dict[str, Any], List[str]]:
        """
        Convert answers to a JSON-safe dict.

        Returns:
            tuple: (answers dict with tag sets as sorted lists,
                    sorted list of keys that held tag sets)
        """
        payload = {}
        tag_keys = []

        for key, value in answers.items():
            if isinstance(value, (set, frozenset)):
                payload[key] = sorted(value)
                tag_keys.append(key)
            else:
                payload[key] = value

        return payload, sorted(tag_keys)

    @staticmethod
    def from_json(payload: Dict[str, Any], tag_keys: Optional[Iterable[str]] = None) -> Dict[str, Any]:
        """
        Restore answers from to_json() output.

        Raises:
            ValueError: If payload is not a dict or a tag key does not
                hold a list
        """
        if not isinstance(payload, dict):
            raise ValueError("answers must be a JSON object")

        answers = dict(payload)

        for key in tag_keys or ():
            value = answers.get(key)
            if not isinstance(value, list):
                raise ValueError(f"tag field '{key}' must be a list")
            answers[key] = frozenset(value)

        return answers
