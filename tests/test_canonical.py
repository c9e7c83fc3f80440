"""Unit tests for canonical JSON and record fingerprints."""

from entval.utils.canonical import canonical_json, content_hash, record_fingerprint
from tests.factories import app_item, make_record


def test_canonical_json_sorts_keys():
    """Canonical JSON sorts keys."""
    obj = {"b": 1, "a": 2}
    assert canonical_json(obj) == '{"a":2,"b":1}'


def test_content_hash_deterministic():
    """Content hash is deterministic and key-order independent."""
    h1 = content_hash({"x": [1, 2], "y": "z"})
    h2 = content_hash({"y": "z", "x": [1, 2]})
    assert h1 == h2
    assert len(h1) == 64  # SHA256 hex


def test_fingerprint_ignores_cosmetic_fields():
    """Edits that cannot change a validation outcome keep the fingerprint."""
    a = make_record(apps=[app_item("A")])
    b = make_record(apps=[app_item("A")], Name="PS-RENAMED", LastModifiedDate="2024-04-01T00:00:00.000+0000")
    assert record_fingerprint(a) == record_fingerprint(b)


def test_fingerprint_tracks_entitlement_changes():
    a = make_record(apps=[app_item("A", end="2024-12-31")])
    b = make_record(apps=[app_item("A", end="2025-12-31")])
    assert record_fingerprint(a) != record_fingerprint(b)


def test_fingerprint_tracks_request_type():
    a = make_record(request_type="Provision")
    b = make_record(request_type="Deprovision")
    assert record_fingerprint(a) != record_fingerprint(b)
