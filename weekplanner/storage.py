"""Synchronous key/value persistence for the planner document."""
from __future__ import annotations

import json
import logging
import shutil
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple

from pydantic import TypeAdapter, ValidationError

from .migrations import MigrationContext, migrate_v2_to_v3, upgrade_document
from .models import InstanceRecord, PlannerDocument, QueueTask, Template, WeekInstances

logger = logging.getLogger(__name__)


class KeyValueStorage(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...


class MemoryStorage:
    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self.data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = value


class JsonFileStorage:
    """All keys live in one JSON file, written atomically.

    A file that does not parse is backed up to ``<name>.corrupt.<ts>`` and
    treated as empty so the planner can continue.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def _read_all(self) -> Dict[str, object]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            data = None
        if isinstance(data, dict):
            return data
        ts = int(datetime.now().timestamp())
        backup = self.path.with_name(f"{self.path.name}.corrupt.{ts}")
        shutil.copy2(self.path, backup)
        logger.warning("corrupted %s detected, backed up to %s", self.path, backup)
        return {}

    def get(self, key: str) -> Optional[str]:
        data = self._read_all()
        if key not in data:
            return None
        return json.dumps(data[key])

    def set(self, key: str, value: str) -> None:
        data = self._read_all()
        data[key] = json.loads(value)
        self.path.parent.mkdir(parents=True, exist_ok=True)

        # use a temp file in the same directory for atomic replace
        with tempfile.NamedTemporaryFile("w", delete=False, dir=str(self.path.parent), encoding="utf-8") as tf:
            tf.write(json.dumps(data, indent=2))
            tmp_path = Path(tf.name)
        shutil.move(str(tmp_path), str(self.path))


_DOCUMENT_KEYS = frozenset(
    {"tasks", "nextId", "next_id", "templates", "weeklyInstances", "weekly_instances", "goals", "migrated",
     "schemaVersion", "schema_version"}
)

_instance_adapter = TypeAdapter(InstanceRecord)


def backup_blob(storage: KeyValueStorage, key: str, blob: str) -> Optional[str]:
    """Copy ``blob`` to ``<key>.corrupt.<ts>`` before the live key is replaced."""
    ts = int(datetime.now().timestamp())
    backup_key = f"{key}.corrupt.{ts}"
    try:
        storage.set(backup_key, blob)
    except (OSError, TypeError, ValueError) as exc:
        logger.error("could not back up planner data: %s", exc)
        return None
    logger.warning("invalid planner data backed up to %s", backup_key)
    return backup_key


def _valid_records(validate: Callable[[Any], Any], records: List[Any], what: str) -> List[Any]:
    kept = []
    for record in records:
        try:
            kept.append(validate(record))
        except ValidationError as exc:
            logger.warning("dropping invalid %s %r: %s", what, record.get("id") or record.get("title"), exc)
    return kept


def salvage_document(raw: Dict[str, Any], ctx: MigrationContext) -> PlannerDocument:
    """Keep every record that validates on its own and drop the rest."""
    raw = migrate_v2_to_v3(raw, ctx)
    weeks = {
        week_id: WeekInstances(
            tasks=_valid_records(_instance_adapter.validate_python, week["tasks"], f"row of {week_id}")
        )
        for week_id, week in raw["weeklyInstances"].items()
    }
    extras = {k: v for k, v in raw.items() if k not in _DOCUMENT_KEYS}
    return PlannerDocument(
        tasks=_valid_records(QueueTask.model_validate, raw["tasks"], "task"),
        next_id=raw["nextId"],
        templates=_valid_records(Template.model_validate, raw["templates"], "template"),
        weekly_instances=weeks,
        goals=raw["goals"],
        migrated=True,
        **extras,
    )


def load_document(storage: KeyValueStorage, key: str, ctx: MigrationContext) -> Tuple[PlannerDocument, bool]:
    """Read, upgrade and validate the stored document.

    Returns ``(document, upgraded)``. Unreadable data yields an empty document
    instead of an error. Before anything stored is dropped, the raw blob is
    copied to ``<key>.corrupt.<ts>``; records that fail validation are dropped
    one by one and the rest is kept.
    """
    try:
        blob = storage.get(key)
    except OSError as exc:
        logger.error("could not read planner data: %s", exc)
        return PlannerDocument(), False
    if blob is None:
        return PlannerDocument(), False

    try:
        raw = json.loads(blob)
    except ValueError as exc:
        backup_blob(storage, key, blob)
        logger.warning("planner data is not valid JSON, starting empty: %s", exc)
        return PlannerDocument(), False
    if not isinstance(raw, dict):
        backup_blob(storage, key, blob)
        logger.warning("planner data is not an object, starting empty")
        return PlannerDocument(), False

    try:
        upgraded, applied = upgrade_document(raw, ctx)
    except (TypeError, ValueError, AttributeError, KeyError) as exc:
        backup_blob(storage, key, blob)
        logger.warning("planner data could not be upgraded, starting empty: %s", exc)
        return PlannerDocument(), False

    try:
        return PlannerDocument.model_validate(upgraded), bool(applied)
    except ValidationError as exc:
        logger.warning("planner data failed validation, keeping the valid records: %s", exc)

    backup_blob(storage, key, blob)
    try:
        return salvage_document(upgraded, ctx), True
    except (ValidationError, TypeError, ValueError) as exc:
        logger.warning("planner data could not be salvaged, starting empty: %s", exc)
        return PlannerDocument(), False


def save_document(storage: KeyValueStorage, key: str, doc: PlannerDocument) -> bool:
    try:
        storage.set(key, json.dumps(doc.to_json_dict()))
    except (OSError, TypeError, ValueError) as exc:
        logger.error("error saving planner data: %s", exc)
        return False
    return True
