"""Snapshot flattening and diffing for wiki changes.

Snapshots are JSON documents. They are flattened into ``path -> text``
pairs (dotted keys, ``[i]`` for list items) and compared after trimming
whitespace. Audit-only keys never appear in diffs or views.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Iterable, Sequence

SKIPPED_KEYS = frozenset({
    "ID",
    "CreatedBy",
    "ModeracioEstat",
    "ModeracioMotiu",
    "ModeratedBy",
    "ModeratedAt",
    "id",
    "created_by",
    "moderacio_estat",
    "moderacio_motiu",
    "moderated_by",
    "moderated_at",
})

NULL_WRAPPER_VALUE_KEYS = ("String", "Int64", "Float64", "Bool", "Time")
VERSION_SEPARATOR = "||v:"


class SnapshotDecodeError(ValueError):
    """Snapshot is neither JSON nor a JSON string wrapping JSON."""


@dataclass(frozen=True)
class FieldChange:
    key: str
    before: str
    after: str


@dataclass(frozen=True)
class VersionedSnapshot:
    version: int
    snapshot: Any


@dataclass(frozen=True)
class VersionedFieldChange:
    """One field change introduced by the step into ``version``."""
    key: str
    version: int
    before: str
    after: str


# =============================================================================
# Decoding and flattening
# =============================================================================

def decode_snapshot(raw: Any) -> Any:
    """
    Decode a snapshot, unwrapping one level of string encoding.

    Already-decoded values pass through. Raises SnapshotDecodeError.
    """
    if raw is None or not isinstance(raw, (str, bytes)):
        return raw
    text = raw.decode("utf-8") if isinstance(raw, bytes) else raw
    if not text.strip():
        return None
    try:
        value = json.loads(text)
    except json.JSONDecodeError as e:
        raise SnapshotDecodeError("invalid snapshot") from e
    if isinstance(value, str):
        if not value.strip():
            return None
        try:
            return json.loads(value)
        except json.JSONDecodeError as e:
            raise SnapshotDecodeError("invalid snapshot") from e
    return value


def stringify_scalar(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if value.is_integer():
            return str(int(value))
        return f"{value:.4f}"
    return str(value)


def unwrap_null_wrapper(value: dict) -> tuple[bool, Any]:
    """
    Collapse ``{"Valid": bool, <Type>: v}`` objects.

    Returns (is_wrapper, inner value). Invalid wrappers yield None.
    """
    valid = value.get("Valid")
    if not isinstance(valid, bool):
        return False, None
    if not valid:
        return True, None
    for key in NULL_WRAPPER_VALUE_KEYS:
        if key in value:
            return True, value[key]
    return True, None


def _flatten_value(prefix: str, value: Any, out: dict[str, str]) -> None:
    if isinstance(value, dict):
        is_wrapper, inner = unwrap_null_wrapper(value)
        if is_wrapper:
            out[prefix or "value"] = stringify_scalar(inner)
            return
        for key in sorted(value):
            _flatten_value(f"{prefix}.{key}" if prefix else key, value[key], out)
    elif isinstance(value, list):
        if not value:
            out[prefix or "value"] = "[]"
            return
        for index, item in enumerate(value):
            _flatten_value(f"{prefix}[{index}]", item, out)
    else:
        out[prefix or "value"] = stringify_scalar(value)


def flatten_snapshot(raw: Any) -> dict[str, str]:
    """Flatten a snapshot; undecodable input flattens to nothing."""
    try:
        data = decode_snapshot(raw)
    except SnapshotDecodeError:
        return {}
    out: dict[str, str] = {}
    if isinstance(data, dict):
        for key, value in data.items():
            _flatten_value(key, value, out)
    elif data is not None:
        _flatten_value("value", data, out)
    return out


def is_skipped_key(key: str) -> bool:
    """Audit-only keys, matched on the last path segment without index."""
    base = key.rsplit(".", 1)[-1]
    base = base.split("[", 1)[0]
    return base in SKIPPED_KEYS


# =============================================================================
# Diffs
# =============================================================================

def build_diff(before: Any, after: Any) -> list[FieldChange]:
    """Changed leaf keys, sorted, values trimmed."""
    flat_before = flatten_snapshot(before)
    flat_after = flatten_snapshot(after)
    keys = sorted(
        key for key in set(flat_before) | set(flat_after) if not is_skipped_key(key)
    )
    changes: list[FieldChange] = []
    for key in keys:
        before_value = flat_before.get(key, "").strip()
        after_value = flat_after.get(key, "").strip()
        if before_value != after_value:
            changes.append(FieldChange(key, before_value, after_value))
    return changes


def build_view_fields(snapshot: Any) -> list[tuple[str, str]]:
    """All visible fields of one snapshot, sorted by key."""
    flat = flatten_snapshot(snapshot)
    return [(key, flat[key].strip()) for key in sorted(flat) if not is_skipped_key(key)]


def build_multi_version_diff(entries: Sequence[VersionedSnapshot]) -> list[VersionedFieldChange]:
    """Per-step changes across consecutive versions, oldest step first."""
    changes: list[VersionedFieldChange] = []
    for previous, current in zip(entries, entries[1:]):
        if previous.snapshot is None or current.snapshot is None:
            continue
        for change in build_diff(previous.snapshot, current.snapshot):
            changes.append(
                VersionedFieldChange(change.key, current.version, change.before, change.after)
            )
    return changes


def format_diff_line(value: str, version: int) -> str:
    value = value.strip()
    if not value:
        return ""
    if version > 0:
        return f"{value}{VERSION_SEPARATOR}{version}"
    return value


def render_multi_version_diff(changes: Iterable[VersionedFieldChange]) -> list[FieldChange]:
    """
    Render versioned changes as one row per key.

    Before/after columns hold newline-joined ``value||v:N`` lines in version
    order; rows end up sorted by key.
    """
    lines: dict[str, tuple[list[str], list[str]]] = {}
    for change in changes:
        before_lines, after_lines = lines.setdefault(change.key, ([], []))
        if change.before:
            before_lines.append(format_diff_line(change.before, change.version))
        if change.after:
            after_lines.append(format_diff_line(change.after, change.version))
    rendered: list[FieldChange] = []
    for key in sorted(lines):
        before = "\n".join(lines[key][0]).strip()
        after = "\n".join(lines[key][1]).strip()
        if before or after:
            rendered.append(FieldChange(key, before, after))
    return rendered


# =============================================================================
# Record rows (persons and attributes of a transcribed record)
# =============================================================================

RowDiff = dict[str, FieldChange]


def build_record_rows_diff(
    before_rows: Sequence[dict] | None,
    after_rows: Sequence[dict] | None,
) -> list[RowDiff]:
    """
    Positional row diff: row i of before is compared with row i of after.

    Each returned row maps field -> change for the fields that differ; rows
    with no differing field are dropped.
    """
    before_rows = list(before_rows or [])
    after_rows = list(after_rows or [])
    rows: list[RowDiff] = []
    for index in range(max(len(before_rows), len(after_rows))):
        before = before_rows[index] if index < len(before_rows) else {}
        after = after_rows[index] if index < len(after_rows) else {}
        row = {change.key: change for change in build_diff(before, after)}
        if row:
            rows.append(row)
    return rows


def build_record_rows_diff_multi(
    entries: Sequence[VersionedSnapshot], rows_key: str
) -> list[RowDiff]:
    """Positional row diffs per step, values tagged with the step's version."""
    tagged: list[RowDiff] = []
    for previous, current in zip(entries, entries[1:]):
        if not isinstance(previous.snapshot, dict) or not isinstance(current.snapshot, dict):
            continue
        for row in build_record_rows_diff(
            previous.snapshot.get(rows_key), current.snapshot.get(rows_key)
        ):
            tagged.append({
                key: FieldChange(
                    key,
                    format_diff_line(change.before, current.version),
                    format_diff_line(change.after, current.version),
                )
                for key, change in row.items()
            })
    return tagged
