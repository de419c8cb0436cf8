"""Append-only JSON/CSV response storage."""

from __future__ import annotations

import csv
import json
from concurrent.futures import ThreadPoolExecutor

import pytest

from formgate.errors import NoResponses, StorageUnavailable
from formgate.schemas.submission import StoredResponse, SubmissionMetadata
from formgate.services.storage_svc import (
    ResponseStore,
    escape_csv_value,
    flatten_value,
    form_key_for,
    unescape_csv_value,
)


def _response(i: int = 0, **data) -> StoredResponse:
    return StoredResponse(
        timestamp=f"2024-01-01T00:00:{i:02d}.000Z",
        form_id="contact",
        form_title="Contact Us",
        data=data or {"n": str(i)},
        metadata=SubmissionMetadata(ip="127.0.0.1", user_agent="pytest"),
    )


@pytest.fixture
def store(storage_dir) -> ResponseStore:
    return ResponseStore(storage_dir, lock_timeout=5)


@pytest.mark.parametrize(
    "storage, key",
    [
        ("responses/contact.json", "contact"),
        ("r.csv", "r"),
        ("../../etc/passwd.json", "passwd"),
        ("C:\\forms\\my survey.csv", "my_survey"),
        ("", "responses"),
        ("...json", "responses"),
    ],
)
def test_form_key_for(storage, key):
    assert form_key_for(storage) == key


def test_escape_csv_value():
    assert escape_csv_value('He said "hi", then left') == '"He said ""hi"", then left"'
    assert unescape_csv_value('"He said ""hi"", then left"') == 'He said "hi", then left'
    assert escape_csv_value("plain") == "plain"
    assert escape_csv_value("two\nlines") == '"two\nlines"'
    assert escape_csv_value(None) == ""


def test_flatten_value_joins_lists():
    assert flatten_value(["News", "Jobs"]) == "News; Jobs"
    assert flatten_value(3) == "3"


def test_json_appends_preserve_order(store, storage_dir):
    for i in range(5):
        result = store.append("contact", _response(i), "json")
        assert result.saved
        assert result.count == i + 1

    path = storage_dir / "contact.json"
    records = json.loads(path.read_text(encoding="utf-8"))
    assert [r["data"]["n"] for r in records] == ["0", "1", "2", "3", "4"]
    assert records[0]["formId"] == "contact"
    assert records[0]["metadata"] == {"ip": "127.0.0.1", "userAgent": "pytest"}
    assert path.read_text(encoding="utf-8").startswith('[\n  {\n    "timestamp"')

    listed = store.list("contact")
    assert [r.timestamp for r in listed] == [r["timestamp"] for r in records]
    assert store.count("contact") == 5


def test_list_missing_form_is_empty(store):
    assert store.list("nothing") == []
    assert store.count("nothing", "csv") == 0


def test_corrupt_json_is_not_overwritten(store, storage_dir):
    storage_dir.mkdir()
    path = storage_dir / "contact.json"
    path.write_text("{broken", encoding="utf-8")
    with pytest.raises(StorageUnavailable):
        store.append("contact", _response(), "json")
    assert path.read_text(encoding="utf-8") == "{broken"

    path.write_text('{"not": "a list"}', encoding="utf-8")
    with pytest.raises(StorageUnavailable):
        store.list("contact")


def test_csv_append_and_quoting(store, storage_dir):
    store.append("contact", _response(0, name="Ada", note='He said "hi", then left'), "csv")
    store.append("contact", _response(1, name="Bob", note="ok"), "csv")

    path = storage_dir / "contact.csv"
    lines = path.read_text(encoding="utf-8").splitlines()
    assert lines[0] == "timestamp,name,note"
    assert lines[1] == '2024-01-01T00:00:00.000Z,Ada,"He said ""hi"", then left"'
    assert lines[2] == "2024-01-01T00:00:01.000Z,Bob,ok"


def test_csv_header_widens_for_new_keys(store, storage_dir):
    store.append("contact", _response(0, name="Ada"), "csv")
    result = store.append("contact", _response(1, name="Bob", tags=["a", "b"]), "csv")
    assert result.count == 2

    with (storage_dir / "contact.csv").open(encoding="utf-8", newline="") as f:
        rows = list(csv.DictReader(f))
    assert list(rows[0]) == ["timestamp", "name", "tags"]
    assert rows[0]["tags"] == ""
    assert rows[1]["tags"] == "a; b"

    store.append("contact", _response(2, tags="c"), "csv")
    assert [r.data for r in store.list("contact", "csv")] == [
        {"name": "Ada"},
        {"name": "Bob", "tags": "a; b"},
        {"tags": "c"},
    ]


def test_csv_widening_keeps_cells_past_the_header(store, storage_dir):
    storage_dir.mkdir()
    path = storage_dir / "contact.csv"
    path.write_text("timestamp,name\n2024-01-01T00:00:00.000Z,Ada,extra@x.com\n", encoding="utf-8")

    store.append("contact", _response(1, name="Bob", email="b@x.com"), "csv")

    lines = path.read_text(encoding="utf-8").splitlines()
    assert lines == [
        "timestamp,name,_extra_3,email",
        "2024-01-01T00:00:00.000Z,Ada,extra@x.com,",
        "2024-01-01T00:00:01.000Z,Bob,,b@x.com",
    ]
    assert store.list("contact", "csv")[0].data == {"name": "Ada", "_extra_3": "extra@x.com"}


def test_csv_keeps_a_field_named_timestamp(store, storage_dir):
    store.append("contact", _response(0, name="Ada", timestamp="yesterday"), "csv")

    lines = (storage_dir / "contact.csv").read_text(encoding="utf-8").splitlines()
    assert lines[0] == "timestamp,name,_field_timestamp"
    listed = store.list("contact", "csv")[0]
    assert listed.timestamp == "2024-01-01T00:00:00.000Z"
    assert listed.data == {"name": "Ada", "timestamp": "yesterday"}


def test_export_keeps_a_field_named_timestamp(store):
    store.append("contact", _response(0, timestamp="yesterday"), "json")
    lines = store.export("contact", "csv").read_text(encoding="utf-8").splitlines()
    assert lines == ["timestamp,_field_timestamp", "2024-01-01T00:00:00.000Z,yesterday"]


@pytest.mark.parametrize("fmt", ["json", "csv"])
def test_undecodable_artifact_is_unavailable(store, storage_dir, fmt):
    storage_dir.mkdir()
    (storage_dir / f"contact.{fmt}").write_bytes(b'[{"timestamp": "\xff"}]')

    with pytest.raises(StorageUnavailable):
        store.list("contact", fmt)
    with pytest.raises(StorageUnavailable):
        store.count("contact", fmt)
    with pytest.raises(StorageUnavailable):
        store.export("contact", "csv" if fmt == "json" else "json")
    with pytest.raises(StorageUnavailable):
        store.append("contact", _response(), fmt)


def test_export_csv_uses_union_of_keys(store, storage_dir):
    store.append("contact", _response(0, name="Ada"), "json")
    store.append("contact", _response(1, email="b@x.com", tags=["x", "y"]), "json")

    path = store.export("contact", "csv")
    assert path == storage_dir / "contact.csv"
    lines = path.read_text(encoding="utf-8").splitlines()
    assert lines == [
        "timestamp,name,email,tags",
        "2024-01-01T00:00:00.000Z,Ada,,",
        "2024-01-01T00:00:01.000Z,,b@x.com,x; y",
    ]


def test_export_json_from_csv(store, storage_dir):
    store.append("contact", _response(0, name="Ada"), "csv")
    path = store.export("contact", "json")
    records = json.loads(path.read_text(encoding="utf-8"))
    assert records == [{"timestamp": "2024-01-01T00:00:00.000Z", "data": {"name": "Ada"}}]


def test_export_without_responses(store, storage_dir):
    with pytest.raises(NoResponses):
        store.export("contact", "csv")
    storage_dir.mkdir()
    (storage_dir / "contact.json").write_text("[]", encoding="utf-8")
    with pytest.raises(NoResponses):
        store.export("contact", "csv")


def test_purge(store, storage_dir):
    store.append("contact", _response(), "json")
    store.export("contact", "csv")
    assert store.purge("contact") == 2
    assert store.list("contact") == []
    assert (storage_dir / "contact.lock").exists()
    assert store.purge("contact") == 0


def test_purge_without_storage_dir(store, storage_dir):
    assert store.purge("contact") == 0
    assert not storage_dir.exists()


def test_keys_cannot_escape_root(store, storage_dir):
    path = store.artifact_path("../../evil", "json")
    assert path.parent == storage_dir
    with pytest.raises(StorageUnavailable):
        store.safe_key("..")


def test_concurrent_appends_keep_every_response(store):
    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(lambda i: store.append("contact", _response(i % 60, n=str(i)), "json"), range(40)))
    stored = sorted(int(r.data["n"]) for r in store.list("contact"))
    assert stored == list(range(40))


def test_concurrent_csv_appends_keep_every_response(store):
    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(lambda i: store.append("contact", _response(i, n=str(i)), "csv"), range(30)))
    assert store.count("contact", "csv") == 30
