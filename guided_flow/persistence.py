"""
Flow progress persistence.

Serializes flow run state to a durable key-value store under a
flow-scoped key, and restores it on flow entry. Also provides the
local stores used by the console harness and the web app.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from guided_flow.commands import FlowRunState
from guided_flow.contracts import FlowDefinition
from guided_flow.core.answer_store import AnswerStore
from guided_flow.utils.helpers import generate_run_id

logger = logging.getLogger(__name__)


PERSISTENCE_VERSION = 1


class CorruptProgressError(ValueError):
    """Persisted progress is malformed or doesn't match the flow."""


# =============================================================================
# Durable key-value stores
# =============================================================================

class InMemoryKeyValueStore:
    """Dict-backed store (tests, console runs without --save-dir)."""

    def __init__(self):
        self.data: Dict[str, bytes] = {}

    def read(self, key: str) -> Optional[bytes]:
        return self.data.get(key)

    def write(self, key: str, value: bytes) -> None:
        self.data[key] = value

    def delete(self, key: str) -> None:
        self.data.pop(key, None)


class JSONFileKeyValueStore:
    """
    One file per key under a base directory.

    Layout:
        outputs/progress/
            talbiyah_explore_progress.json
            talbiyah_diagnostic_progress.json
    """

    def __init__(self, base_dir: str = "outputs/progress"):
        """
        Args:
            base_dir: Directory holding one file per key
        """
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"JSONFileKeyValueStore initialized: {self.base_dir}")

    def _path(self, key: str) -> Path:
        safe = "".join(c if c.isalnum() or c in "-_" else "_" for c in key)
        return self.base_dir / f"{safe}.json"

    def read(self, key: str) -> Optional[bytes]:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_bytes()

    def write(self, key: str, value: bytes) -> None:
        self._path(key).write_bytes(value)

    def delete(self, key: str) -> None:
        path = self._path(key)
        if path.exists():
            path.unlink()


# =============================================================================
# Progress persistence
# =============================================================================

class ProgressPersistence:
    """
    Saves and restores FlowRunState for one flow.

    Rules:
    - Nothing is written while the run sits on the entry stage; a record
      saved earlier in the run is kept (resume lands past entry)
    - Restored answers are re-coerced through the flow's field specs
    - Writes and deletes are best-effort (failures logged, never raised)
    - Missing or corrupt records restore as None (caller starts fresh)
    """

    def __init__(self, store, flow: FlowDefinition):
        """
        Args:
            store: Durable store with read(key), write(key, bytes), delete(key)
            flow: Flow definition the records belong to

        Raises:
            TypeError: If store lacks read/write/delete
        """
        for method in ("read", "write", "delete"):
            if not callable(getattr(store, method, None)):
                raise TypeError(f"store must have callable {method}() method")

        self.store = store
        self.flow = flow
        self.key = flow.progress_key
        self.answer_store = AnswerStore(flow.fields)

    # ========================
    # Serialization
    # ========================

    def serialize(self, state: FlowRunState) -> bytes:
        """Encode state as UTF-8 JSON bytes."""
        answers, tag_keys = AnswerStore.to_json(state.answers)
        payload = {
            'version': PERSISTENCE_VERSION,
            'flow_id': state.flow_id,
            'current_stage': state.current_stage,
            'high_water_mark': state.high_water_mark,
            'answers': answers,
            'tag_keys': tag_keys,
            'flags': state.flags,
        }
        return json.dumps(payload, ensure_ascii=False, sort_keys=True).encode('utf-8')

    def deserialize(self, raw: bytes) -> FlowRunState:
        """
        Decode bytes produced by serialize().

        Raises:
            CorruptProgressError: If the record is malformed or doesn't
                match this flow
        """
        try:
            data = json.loads(raw.decode('utf-8') if isinstance(raw, (bytes, bytearray)) else raw)
        except (UnicodeDecodeError, json.JSONDecodeError, TypeError) as e:
            raise CorruptProgressError(f"Unreadable progress record: {e}")

        if not isinstance(data, dict):
            raise CorruptProgressError("Progress record is not a JSON object")

        if data.get('version') != PERSISTENCE_VERSION:
            raise CorruptProgressError(f"Unsupported progress version: {data.get('version')}")

        if data.get('flow_id') != self.flow.flow_id:
            raise CorruptProgressError(
                f"Progress belongs to flow '{data.get('flow_id')}', expected '{self.flow.flow_id}'"
            )

        current = data.get('current_stage')
        high_water_mark = data.get('high_water_mark')

        for label, stage_id in (('current_stage', current), ('high_water_mark', high_water_mark)):
            if not isinstance(stage_id, str) or self.flow.get_stage(stage_id) is None:
                raise CorruptProgressError(f"Unknown {label}: {stage_id!r}")

        if self.flow.get_stage(high_water_mark).ordinal < self.flow.get_stage(current).ordinal:
            raise CorruptProgressError("high_water_mark is behind current_stage")

        tag_keys = data.get('tag_keys', [])
        flags = data.get('flags', {})
        if not isinstance(tag_keys, list) or not isinstance(flags, dict):
            raise CorruptProgressError("Malformed tag_keys or flags")

        try:
            answers = AnswerStore.from_json(data.get('answers', {}), tag_keys)
            answers = {key: self.answer_store.coerce(key, value) for key, value in answers.items()}
        except (ValueError, TypeError) as e:
            raise CorruptProgressError(f"Malformed answers: {e}")

        return FlowRunState(
            flow_id=self.flow.flow_id,
            current_stage=current,
            high_water_mark=high_water_mark,
            answers=answers,
            flags=flags,
        )

    # ========================
    # Store operations
    # ========================

    def should_persist(self, state: FlowRunState) -> bool:
        """False while the run is on the entry stage."""
        return state.current_stage != self.flow.entry_stage.id

    def save(self, state: FlowRunState) -> bool:
        """
        Write state if persistence has begun for this run.

        Returns:
            bool: True if a write happened and succeeded
        """
        if not self.should_persist(state):
            return False

        try:
            self.store.write(self.key, self.serialize(state))
        except Exception as e:
            logger.warning(f"Progress write failed for '{self.key}': {e}")
            return False

        logger.debug(f"Progress saved for '{self.key}' at stage '{state.current_stage}'")
        return True

    def load(self) -> Optional[FlowRunState]:
        """
        Restore persisted state.

        Returns:
            FlowRunState, or None if nothing usable is stored
        """
        try:
            raw = self.store.read(self.key)
        except Exception as e:
            logger.warning(f"Progress read failed for '{self.key}': {e}")
            return None

        if raw is None:
            return None

        try:
            state = self.deserialize(raw)
        except CorruptProgressError as e:
            logger.warning(f"Discarding corrupt progress for '{self.key}': {e}")
            self.clear()
            return None

        logger.info(f"Progress restored for '{self.key}' at stage '{state.current_stage}'")
        return state

    def clear(self) -> None:
        try:
            self.store.delete(self.key)
        except Exception as e:
            logger.warning(f"Progress delete failed for '{self.key}': {e}")


# =============================================================================
# Local record store
# =============================================================================

class LocalRecordStore:
    """
    File-backed record store for local runs of the web app.

    Layout:
        outputs/records/
            diagnostic_assessments/
                a3f7e2b9.json
            profiles/
                user-123.json

    Inserts are append-only (one file per record); updates merge a patch
    into the record file, creating it if missing.
    """

    def __init__(self, base_dir: str = "outputs/records"):
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"LocalRecordStore initialized: {self.base_dir}")

    def _record_path(self, collection: str, record_id: str) -> Path:
        collection_dir = self.base_dir / collection
        collection_dir.mkdir(exist_ok=True)
        return collection_dir / f"{record_id}.json"

    def insert(self, collection: str, record: Dict[str, Any]) -> str:
        """
        Insert a new record.

        Returns:
            str: Generated record id

        Raises:
            FileExistsError: If the generated id collides
        """
        record_id = generate_run_id(length=None)
        path = self._record_path(collection, record_id)

        if path.exists():
            raise FileExistsError(f"Record file already exists: {path}")

        with open(path, 'w', encoding='utf-8') as f:
            json.dump({'id': record_id, **record}, f, indent=2, ensure_ascii=False, default=str)

        logger.info(f"Inserted record {record_id} into '{collection}'")
        return record_id

    def update(self, collection: str, record_id: str, patch: Dict[str, Any]) -> None:
        path = self._record_path(collection, record_id)

        current = {'id': record_id}
        if path.exists():
            with open(path, 'r', encoding='utf-8') as f:
                current = json.load(f)

        current.update(patch)

        with open(path, 'w', encoding='utf-8') as f:
            json.dump(current, f, indent=2, ensure_ascii=False, default=str)

        logger.info(f"Updated record {record_id} in '{collection}'")

    def get(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        path = self.base_dir / collection / f"{record_id}.json"
        if not path.exists():
            return None
        with open(path, 'r', encoding='utf-8') as f:
            return json.load(f)
