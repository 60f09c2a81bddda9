from __future__ import annotations

import json
import re
from typing import Any

from .types import DirectorOutput, GraphDelta, GraphEdge, GraphNode

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])([A-Z])")


def normalize_session_key(value: str) -> str:
    value = (value or "").strip()
    value = re.sub(r"\s+", "_", value)
    value = re.sub(r"[^a-zA-Z0-9_-]", "", value)
    return value.lower()[:128] or "default"


def snake_case_key(key: str) -> str:
    return _CAMEL_BOUNDARY.sub(r"_\1", str(key).strip()).lower()


def parse_json_dict(text: str | None) -> dict[str, Any]:
    if not text:
        return {}
    try:
        data = json.loads(text)
    except Exception:
        return {}
    return data if isinstance(data, dict) else {}


def dump_json(data: dict[str, Any]) -> str:
    return json.dumps(data, ensure_ascii=True, separators=(",", ":"))


def coerce_float(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def _str_list(raw: Any) -> list[str]:
    if not isinstance(raw, list):
        return []
    return [str(item).strip() for item in raw if str(item or "").strip()]


def parse_graph_node(raw: Any) -> GraphNode | None:
    if not isinstance(raw, dict):
        return None
    node_id = str(raw.get("id") or "").strip()
    if not node_id:
        return None
    weight = coerce_float(raw.get("weight", raw.get("val")))
    return GraphNode(
        id=node_id,
        label=str(raw.get("label") or node_id),
        group=str(raw.get("group") or ""),
        weight=weight if weight is not None else 1.0,
    )


def parse_graph_edge(raw: Any) -> GraphEdge | None:
    if not isinstance(raw, dict):
        return None
    source = str(raw.get("source") or "").strip()
    target = str(raw.get("target") or "").strip()
    if not source or not target:
        return None
    weight = coerce_float(raw.get("weight"))
    return GraphEdge(
        source=source,
        target=target,
        relation=str(raw.get("relation") or ""),
        weight=weight if weight is not None else 1.0,
    )


def parse_graph_delta(raw: dict[str, Any] | None) -> GraphDelta | None:
    if not isinstance(raw, dict):
        return None
    delta = GraphDelta()
    for entry in raw.get("nodes_added") or []:
        node = parse_graph_node(entry)
        if node is not None:
            delta.nodes_added.append(node)
    delta.nodes_removed = _str_list(raw.get("nodes_removed"))
    for entry in raw.get("edges_added") or []:
        edge = parse_graph_edge(entry)
        if edge is not None:
            delta.edges_added.append(edge)
    for entry in raw.get("edges_removed") or []:
        if not isinstance(entry, dict):
            continue
        source = str(entry.get("source") or "").strip()
        target = str(entry.get("target") or "").strip()
        if source and target:
            delta.edges_removed.append((source, target))
    return delta


def parse_director_output(raw: dict[str, Any] | str | None) -> DirectorOutput | None:
    """Build a ``DirectorOutput`` from a decoded model response.

    Accepts both the legacy (``state_updates``/``graph_updates``) and current
    (``ledgerDelta``/``graphDelta``) key names. Returns ``None`` when the
    payload carries no narrative.
    """
    if isinstance(raw, str):
        raw = parse_json_dict(raw)
    if not isinstance(raw, dict):
        return None
    narrative = str(raw.get("narrative") or raw.get("publicRender") or "").strip()
    if not narrative:
        return None
    ledger_delta = raw.get("ledgerDelta", raw.get("ledger_delta", raw.get("state_updates")))
    graph_raw = raw.get("graphDelta", raw.get("graph_delta", raw.get("graph_updates")))
    location = raw.get("location")
    return DirectorOutput(
        narrative=narrative,
        choices=_str_list(raw.get("choices")),
        visual_prompt=str(raw.get("visual_prompt") or raw.get("visualPrompt") or "").strip(),
        ledger_delta=ledger_delta if isinstance(ledger_delta, dict) else {},
        graph_delta=parse_graph_delta(graph_raw),
        location=str(location).strip() if location else None,
        active_characters=_str_list(raw.get("active_characters") or raw.get("activeCharacters")),
        tags=_str_list(raw.get("tags")),
        thought_process=raw.get("thought_process") or None,
        simulation_log=raw.get("simulationLog") or raw.get("simulation_log") or None,
    )
