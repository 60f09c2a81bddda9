from __future__ import annotations

import json

import pytest

from story_loom.core.errors import SnapshotCorruptError
from story_loom.core.snapshot import SessionSnapshot, decode_session, encode_session
from story_loom.core.state import default_graph, default_ledger
from story_loom.core.types import MediaStatus, Turn


def _snapshot(*turns: Turn) -> SessionSnapshot:
    nodes, edges = default_graph()
    return SessionSnapshot(
        ledger=default_ledger(),
        nodes=nodes,
        edges=edges,
        location="Dock",
        turns=list(turns),
        current_turn_id=turns[-1].id if turns else None,
        next_index=len(turns),
        choices=["Wait"],
    )


def test_blob_carries_version_and_base64_payloads():
    turn = Turn(id="t1", index=0, text="hello", visual_prompt="p")
    turn.image.mark_ready(b"\xff\x00raw")
    blob = json.loads(encode_session(_snapshot(turn)))
    assert blob["format_version"] == 1
    media = blob["timeline"]["turns"][0]["media"]
    assert media["image"]["payload"] == "/wByYXc="
    assert media["audio"]["payload"] is None


def test_transient_statuses_come_back_idle():
    turn = Turn(id="t1", index=0, text="hello", visual_prompt="p")
    turn.image.mark_pending()
    turn.audio.mark_in_progress(retry_count=2)
    turn.video.mark_error("gave up")
    turn.video.retry_count = 3

    decoded = decode_session(encode_session(_snapshot(turn))).turns[0]
    assert decoded.image.status is MediaStatus.IDLE
    assert decoded.audio.status is MediaStatus.IDLE
    assert decoded.audio.retry_count == 0
    assert decoded.video.status is MediaStatus.ERROR
    assert decoded.video.error == "gave up"
    assert decoded.video.retry_count == 3


def test_ready_without_payload_is_rehydrated_idle():
    turn = Turn(id="t1", index=0, text="hello", visual_prompt="p")
    blob = json.loads(encode_session(_snapshot(turn)))
    blob["timeline"]["turns"][0]["media"]["image"] = {"status": "ready", "payload": None}
    decoded = decode_session(json.dumps(blob)).turns[0]
    assert decoded.image.status is MediaStatus.IDLE
    assert decoded.image.payload is None


def test_duplicate_turn_ids_are_corrupt():
    a = Turn(id="t1", index=0, text="a", visual_prompt="")
    b = Turn(id="t1", index=1, text="b", visual_prompt="")
    with pytest.raises(SnapshotCorruptError):
        decode_session(encode_session(_snapshot(a, b)))


@pytest.mark.parametrize(
    "blob",
    [
        "",
        "[]",
        '{"format_version": 2}',
        '{"format_version": 1, "graph": {}, "timeline": {"turns": "nope"}}',
        '{"format_version": 1, "graph": {}, "timeline": {"turns": [{"id": "x"}]}}',
        '{"format_version": 1, "graph": {}, "timeline": {"turns": [{"id": "x", "index": 0, '
        '"media": {"image": {"status": "exploded"}}}]}}',
    ],
)
def test_malformed_blobs_raise(blob):
    with pytest.raises(SnapshotCorruptError):
        decode_session(blob)


def test_decode_clamps_ledger_and_drops_bad_graph_entries():
    blob = json.loads(encode_session(_snapshot()))
    blob["ledger"]["trauma_level"] = 500
    blob["graph"]["nodes"].append({"label": "no id"})
    decoded = decode_session(json.dumps(blob))
    assert decoded.ledger["trauma_level"] == 100
    assert len(decoded.nodes) == len(default_graph()[0])
    assert decoded.choices == ["Wait"]


def test_duplicate_turn_indices_are_corrupt():
    a = Turn(id="t1", index=0, text="a", visual_prompt="")
    b = Turn(id="t2", index=0, text="b", visual_prompt="")
    with pytest.raises(SnapshotCorruptError, match="index"):
        decode_session(encode_session(_snapshot(a, b)))


def test_turn_without_ledger_snapshot_encodes_empty_mapping():
    turn = Turn(id="t1", index=0, text="a", visual_prompt="")
    decoded = decode_session(encode_session(_snapshot(turn))).turns[0]
    assert decoded.metadata.ledger_snapshot == {}
