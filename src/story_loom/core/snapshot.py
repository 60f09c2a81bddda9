from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass, field
from typing import Any

from .errors import SnapshotCorruptError
from .normalize import coerce_float, dump_json, parse_graph_edge, parse_graph_node
from .state import default_ledger, merge_ledger_delta
from .types import (
    ALL_MODALITIES,
    GraphEdge,
    GraphNode,
    MediaSlot,
    MediaStatus,
    Turn,
    TurnMetadata,
)

SNAPSHOT_FORMAT_VERSION = 1

_TRANSIENT = (MediaStatus.PENDING, MediaStatus.IN_PROGRESS)


@dataclass
class SessionSnapshot:
    ledger: dict[str, float]
    nodes: list[GraphNode]
    edges: list[GraphEdge]
    location: str
    turns: list[Turn]
    current_turn_id: str | None
    next_index: int
    choices: list[str] = field(default_factory=list)


def encode_session(snapshot: SessionSnapshot) -> str:
    """Serialise a session to the JSON blob stored under the session key.

    Artifact bytes are base64-encoded. Only plain data is written; audio
    sources, timers and queue bookkeeping never reach the blob.
    """
    return dump_json(
        {
            "format_version": SNAPSHOT_FORMAT_VERSION,
            "ledger": dict(snapshot.ledger),
            "graph": {
                "nodes": [
                    {"id": n.id, "label": n.label, "group": n.group, "weight": n.weight}
                    for n in snapshot.nodes
                ],
                "edges": [
                    {"source": e.source, "target": e.target, "relation": e.relation, "weight": e.weight}
                    for e in snapshot.edges
                ],
            },
            "location": snapshot.location,
            "choices": list(snapshot.choices),
            "timeline": {
                "turns": [_encode_turn(turn) for turn in snapshot.turns],
                "current_turn_id": snapshot.current_turn_id,
                "next_index": snapshot.next_index,
            },
        }
    )


def decode_session(blob: str) -> SessionSnapshot:
    try:
        data = json.loads(blob)
    except (TypeError, ValueError) as exc:
        raise SnapshotCorruptError(f"snapshot is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise SnapshotCorruptError("snapshot root is not an object")

    version = data.get("format_version")
    if version != SNAPSHOT_FORMAT_VERSION:
        raise SnapshotCorruptError(f"unsupported snapshot format_version {version!r}")

    graph = data.get("graph")
    timeline = data.get("timeline")
    if not isinstance(graph, dict) or not isinstance(timeline, dict):
        raise SnapshotCorruptError("snapshot is missing graph or timeline sections")
    raw_turns = timeline.get("turns")
    if not isinstance(raw_turns, list):
        raise SnapshotCorruptError("snapshot timeline has no turn list")

    ledger_raw = data.get("ledger")
    ledger = merge_ledger_delta(default_ledger(), ledger_raw if isinstance(ledger_raw, dict) else {})
    nodes = [n for n in (parse_graph_node(raw) for raw in graph.get("nodes") or []) if n is not None]
    edges = [e for e in (parse_graph_edge(raw) for raw in graph.get("edges") or []) if e is not None]

    try:
        turns = [_decode_turn(raw) for raw in raw_turns]
    except (TypeError, ValueError) as exc:
        raise SnapshotCorruptError(f"snapshot turn data is malformed: {exc}") from exc
    seen_ids: set[str] = set()
    seen_indices: set[int] = set()
    for turn in turns:
        if turn.id in seen_ids:
            raise SnapshotCorruptError(f"duplicate turn id {turn.id}")
        if turn.index in seen_indices:
            raise SnapshotCorruptError(f"duplicate turn index {turn.index}")
        seen_ids.add(turn.id)
        seen_indices.add(turn.index)

    try:
        next_index = int(timeline.get("next_index") or 0)
    except (TypeError, ValueError) as exc:
        raise SnapshotCorruptError("snapshot next_index is not an integer") from exc

    current = timeline.get("current_turn_id")
    choices = data.get("choices")
    return SessionSnapshot(
        ledger=ledger,
        nodes=nodes,
        edges=edges,
        location=str(data.get("location") or "Unknown"),
        turns=turns,
        current_turn_id=str(current) if current else None,
        next_index=next_index,
        choices=[str(c) for c in choices] if isinstance(choices, list) else [],
    )


def _encode_turn(turn: Turn) -> dict[str, Any]:
    meta = turn.metadata
    return {
        "id": turn.id,
        "index": turn.index,
        "text": turn.text,
        "visual_prompt": turn.visual_prompt,
        "metadata": {
            "ledger_snapshot": dict(meta.ledger_snapshot or {}),
            "active_characters": list(meta.active_characters),
            "location": meta.location,
            "tags": list(meta.tags),
            "simulation_log": meta.simulation_log,
            "director_debug": meta.director_debug,
        },
        "media": {modality.value: _encode_slot(turn.slot(modality)) for modality in ALL_MODALITIES},
    }


def _encode_slot(slot: MediaSlot) -> dict[str, Any]:
    return {
        "status": slot.status.value,
        "payload": base64.b64encode(slot.payload).decode("ascii") if slot.payload is not None else None,
        "duration_seconds": slot.duration_seconds,
        "error": slot.error,
        "retry_count": slot.retry_count,
    }


def _decode_turn(raw: Any) -> Turn:
    if not isinstance(raw, dict):
        raise SnapshotCorruptError("turn entry is not an object")
    turn_id = str(raw.get("id") or "").strip()
    if not turn_id:
        raise SnapshotCorruptError("turn entry has no id")
    try:
        index = int(raw["index"])
    except (KeyError, TypeError, ValueError) as exc:
        raise SnapshotCorruptError(f"turn {turn_id} has no valid index") from exc

    meta_raw = raw.get("metadata") if isinstance(raw.get("metadata"), dict) else {}
    ledger_snapshot = meta_raw.get("ledger_snapshot") if isinstance(meta_raw.get("ledger_snapshot"), dict) else {}
    metadata = TurnMetadata(
        ledger_snapshot={
            str(k): v for k, v in ((k, coerce_float(v)) for k, v in ledger_snapshot.items()) if v is not None
        },
        active_characters=[str(c) for c in meta_raw.get("active_characters") or []],
        location=str(meta_raw.get("location") or "Unknown"),
        tags=[str(t) for t in meta_raw.get("tags") or []],
        simulation_log=meta_raw.get("simulation_log"),
        director_debug=meta_raw.get("director_debug"),
    )

    turn = Turn(
        id=turn_id,
        index=index,
        text=str(raw.get("text") or ""),
        visual_prompt=str(raw.get("visual_prompt") or ""),
        metadata=metadata,
    )
    media = raw.get("media") if isinstance(raw.get("media"), dict) else {}
    for modality in ALL_MODALITIES:
        _decode_slot(turn.slot(modality), media.get(modality.value), turn_id)
    return turn


def _decode_slot(slot: MediaSlot, raw: Any, turn_id: str) -> None:
    if not isinstance(raw, dict):
        return
    try:
        status = MediaStatus(raw.get("status") or MediaStatus.IDLE.value)
    except ValueError as exc:
        raise SnapshotCorruptError(f"turn {turn_id} has unknown media status {raw.get('status')!r}") from exc

    # Jobs from the saved session are abandoned; the caller re-enqueues.
    if status in _TRANSIENT:
        slot.reset()
        return

    if status is MediaStatus.READY:
        encoded = raw.get("payload")
        if not isinstance(encoded, str) or not encoded:
            slot.reset()
            return
        try:
            payload = base64.b64decode(encoded.encode("ascii"), validate=True)
        except (binascii.Error, ValueError) as exc:
            raise SnapshotCorruptError(f"turn {turn_id} has an undecodable payload") from exc
        slot.mark_ready(
            payload,
            coerce_float(raw.get("duration_seconds")),
            retry_count=int(raw.get("retry_count") or 0),
        )
        return

    if status is MediaStatus.ERROR:
        slot.mark_error(str(raw.get("error") or ""))
        slot.retry_count = int(raw.get("retry_count") or 0)
        return

    slot.reset()
