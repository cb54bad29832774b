"""JSON codec for run snapshots."""

from __future__ import annotations

import json
from typing import Any, Dict, Mapping, Optional

from pydantic import ValidationError as PydanticValidationError
from pydantic_core import PydanticSerializationError, to_jsonable_python

from .constants import SNAPSHOT_SCHEMA_VERSION
from .contracts import RunSnapshot
from .errors import StorageError, ValidationError


def encode_snapshot(snapshot: RunSnapshot) -> str:
    """Serialize ``snapshot`` to a JSON document."""
    try:
        return snapshot.model_dump_json(exclude={"status"})
    except PydanticSerializationError as e:
        raise StorageError(
            f"Snapshot for run {snapshot.run_id} is not serializable: {e}"
        ) from e


def decode_snapshot(data: str | bytes) -> RunSnapshot:
    """Rebuild a ``RunSnapshot`` from a JSON document.

    Raises:
        StorageError: If the document is malformed or was written with an
            unsupported schema version.
    """
    try:
        raw = json.loads(data)
    except (TypeError, ValueError) as e:
        raise StorageError(f"Stored snapshot is not valid JSON: {e}") from e

    version = raw.get("schema_version") if isinstance(raw, dict) else None
    if version != SNAPSHOT_SCHEMA_VERSION:
        raise StorageError(
            f"Unsupported snapshot schema version {version!r} "
            f"(expected {SNAPSHOT_SCHEMA_VERSION})"
        )

    raw.pop("status", None)
    try:
        return RunSnapshot.model_validate(raw)
    except PydanticValidationError as e:
        raise StorageError(f"Stored snapshot failed validation: {e}") from e


def to_json_data(
    data: Mapping[str, Any], subject: str, step_id: Optional[str] = None
) -> Dict[str, Any]:
    """Return ``data`` in the form it takes after a store round trip.

    Tuples become lists, datetimes become ISO strings and so on, so a step
    sees the same input whether the run was loaded from a store or not.

    Raises:
        ValidationError: If a value has no JSON representation.
    """
    try:
        return to_jsonable_python(dict(data))
    except PydanticSerializationError as e:
        raise ValidationError(f"{subject} is not JSON serializable: {e}", step_id) from e
