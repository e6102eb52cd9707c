"""Tests for snapshot flattening and wiki diffs."""

import json

import pytest

from genealogia.services.wiki_diff import (
    FieldChange,
    SnapshotDecodeError,
    VersionedFieldChange,
    VersionedSnapshot,
    build_diff,
    build_multi_version_diff,
    build_record_rows_diff,
    build_record_rows_diff_multi,
    build_view_fields,
    decode_snapshot,
    flatten_snapshot,
    render_multi_version_diff,
    stringify_scalar,
)


def test_diff_skips_audit_keys_and_trims_values():
    changes = build_diff(
        {"ID": 1, "Nom": "A", "ModeracioEstat": "pendent"},
        {"ID": 2, "Nom": " B ", "ModeracioEstat": "publicat"},
    )
    assert changes == [FieldChange("Nom", "A", "B")]


def test_whitespace_only_difference_is_not_a_change():
    assert build_diff({"Nom": "Vic"}, {"Nom": "Vic  "}) == []


def test_diff_reports_added_and_removed_keys_sorted():
    changes = build_diff({"b": "1", "c": "x"}, {"a": "2", "b": "1"})
    assert changes == [FieldChange("a", "", "2"), FieldChange("c", "x", "")]


def test_flatten_nested_structures():
    flat = flatten_snapshot({"a": {"b": [1, {"c": True}]}, "e": [], "f": None})
    assert flat == {"a.b[0]": "1", "a.b[1].c": "true", "e": "[]", "f": ""}


def test_flatten_collapses_null_wrappers():
    flat = flatten_snapshot({
        "Data": {"Valid": True, "String": "1900"},
        "Edat": {"Valid": False, "Int64": 3},
        "Pes": {"Valid": True, "Float64": 2.5},
    })
    assert flat == {"Data": "1900", "Edat": "", "Pes": "2.5000"}


@pytest.mark.parametrize(
    "value,expected",
    [(None, ""), (True, "true"), (False, "false"), (7, "7"), (2.0, "2"), (0.125, "0.1250"), ("x", "x")],
)
def test_stringify_scalar(value, expected):
    assert stringify_scalar(value) == expected


def test_decode_unwraps_one_string_layer():
    assert decode_snapshot(json.dumps(json.dumps({"a": 1}))) == {"a": 1}
    assert decode_snapshot('{"a": 1}') == {"a": 1}
    assert decode_snapshot({"a": 1}) == {"a": 1}
    assert decode_snapshot("   ") is None
    assert decode_snapshot(json.dumps("")) is None


def test_decode_rejects_garbage():
    with pytest.raises(SnapshotDecodeError):
        decode_snapshot("{bad")
    with pytest.raises(SnapshotDecodeError):
        decode_snapshot(json.dumps("{bad"))


def test_undecodable_snapshot_flattens_to_nothing():
    assert flatten_snapshot("{bad") == {}


def test_nested_audit_keys_are_skipped():
    changes = build_diff(
        {"persones": [{"ID": 1, "nom": "Joan"}]},
        {"persones": [{"ID": 9, "nom": "Joan"}]},
    )
    assert changes == []


def test_view_fields_are_sorted_and_visible_only():
    fields = build_view_fields({"Nom": " Vic ", "ID": 3, "Codi": "08298"})
    assert fields == [("Codi", "08298"), ("Nom", "Vic")]


def test_multi_version_diff_tags_each_step():
    entries = [
        VersionedSnapshot(0, {"Nom": "A"}),
        VersionedSnapshot(1, {"Nom": "B"}),
        VersionedSnapshot(2, {"Nom": "C", "Ofici": "pages"}),
    ]

    structured = build_multi_version_diff(entries)
    assert structured == [
        VersionedFieldChange("Nom", 1, "A", "B"),
        VersionedFieldChange("Nom", 2, "B", "C"),
        VersionedFieldChange("Ofici", 2, "", "pages"),
    ]

    rendered = render_multi_version_diff(structured)
    assert rendered == [
        FieldChange("Nom", "A||v:1\nB||v:2", "B||v:1\nC||v:2"),
        FieldChange("Ofici", "", "pages||v:2"),
    ]


def test_multi_version_diff_skips_missing_snapshots():
    entries = [
        VersionedSnapshot(0, None),
        VersionedSnapshot(1, {"Nom": "B"}),
        VersionedSnapshot(2, {"Nom": "C"}),
    ]
    assert build_multi_version_diff(entries) == [VersionedFieldChange("Nom", 2, "B", "C")]


def test_version_zero_values_are_untagged():
    rendered = render_multi_version_diff([VersionedFieldChange("Nom", 0, "A", "B")])
    assert rendered == [FieldChange("Nom", "A", "B")]


def test_record_rows_diff_is_positional():
    rows = build_record_rows_diff(
        [{"nom": "Joan", "rol": "pare"}, {"nom": "Maria"}],
        [{"nom": "Joan", "rol": "avi"}, {"nom": "Maria"}, {"nom": "Pere"}],
    )
    assert rows == [
        {"rol": FieldChange("rol", "pare", "avi")},
        {"nom": FieldChange("nom", "", "Pere")},
    ]


def test_record_rows_diff_multi_tags_versions():
    entries = [
        VersionedSnapshot(0, {"persones": [{"nom": "Joan"}]}),
        VersionedSnapshot(1, {"persones": [{"nom": "Joan"}, {"nom": "Anna"}]}),
        VersionedSnapshot(2, {"persones": [{"nom": "Jan"}, {"nom": "Anna"}]}),
    ]

    rows = build_record_rows_diff_multi(entries, "persones")

    assert rows == [
        {"nom": FieldChange("nom", "", "Anna||v:1")},
        {"nom": FieldChange("nom", "Joan||v:2", "Jan||v:2")},
    ]
