from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Iterable

from .normalize import coerce_float, snake_case_key
from .types import GraphDelta, GraphEdge, GraphNode

logger = logging.getLogger(__name__)

LEDGER_MIN = 0.0
LEDGER_MAX = 100.0

DEFAULT_LEDGER: dict[str, float] = {
    "physical_integrity": 100.0,
    "trauma_level": 0.0,
    "shame_level": 0.0,
    "hope_level": 100.0,
    "compliance_score": 0.0,
    "fear_of_authority": 10.0,
    "desire_for_validation": 10.0,
    "capacity_for_manipulation": 20.0,
}

# Older Director prompts used longer field names.
_LEDGER_ALIASES = {
    "shame_pain_abyss_level": "shame_level",
    "trauma": "trauma_level",
    "hope": "hope_level",
    "compliance": "compliance_score",
    "fear": "fear_of_authority",
}

DEFAULT_NODES: tuple[GraphNode, ...] = (
    GraphNode(id="Subject_84", label="Subject 84", group="subject", weight=5),
    GraphNode(id="Provost_Selene", label="Provost Selene", group="faculty", weight=25),
    GraphNode(id="Dr_Lysandra", label="Dr. Lysandra", group="faculty", weight=20),
    GraphNode(id="Petra", label="Petra", group="faculty", weight=18),
    GraphNode(id="Calista", label="Calista", group="faculty", weight=18),
    GraphNode(id="Kaelen", label="Kaelen", group="prefect", weight=12),
    GraphNode(id="Anya", label="Nurse Anya", group="prefect", weight=11),
    GraphNode(id="Elara", label="Elara", group="prefect", weight=10),
)

DEFAULT_EDGES: tuple[GraphEdge, ...] = (
    GraphEdge(source="Provost_Selene", target="Subject_84", relation="owns", weight=10),
    GraphEdge(source="Dr_Lysandra", target="Subject_84", relation="studies", weight=6),
    GraphEdge(source="Kaelen", target="Subject_84", relation="watches", weight=4),
)


def default_ledger() -> dict[str, float]:
    return dict(DEFAULT_LEDGER)


def default_graph() -> tuple[list[GraphNode], list[GraphEdge]]:
    return [replace(n) for n in DEFAULT_NODES], [replace(e) for e in DEFAULT_EDGES]


def clamp(value: float, low: float = LEDGER_MIN, high: float = LEDGER_MAX) -> float:
    return max(low, min(high, value))


def merge_ledger_delta(current: dict[str, float], delta: dict[str, Any] | None) -> dict[str, float]:
    """Overwrite known ledger fields present in ``delta`` then clamp every field.

    Keys may arrive camelCased from the Director; unknown keys and
    non-numeric values are ignored.
    """
    merged = {key: float(current.get(key, default)) for key, default in DEFAULT_LEDGER.items()}
    for raw_key, raw_value in (delta or {}).items():
        key = snake_case_key(raw_key)
        key = _LEDGER_ALIASES.get(key, key)
        if key not in DEFAULT_LEDGER:
            logger.debug("Ignoring unknown ledger field %r", raw_key)
            continue
        value = coerce_float(raw_value)
        if value is None:
            logger.warning("Ignoring non-numeric ledger value %s=%r", raw_key, raw_value)
            continue
        merged[key] = value
    return {key: clamp(value) for key, value in merged.items()}


def reconcile_graph(
    nodes: Iterable[GraphNode],
    edges: Iterable[GraphEdge],
    delta: GraphDelta | None,
) -> tuple[list[GraphNode], list[GraphEdge]]:
    next_nodes = [replace(n) for n in nodes]
    next_edges = [replace(e) for e in edges]
    if delta is None:
        return next_nodes, next_edges

    node_index = {node.id: pos for pos, node in enumerate(next_nodes)}
    for node in delta.nodes_added:
        pos = node_index.get(node.id)
        if pos is None:
            node_index[node.id] = len(next_nodes)
            next_nodes.append(replace(node))
        else:
            next_nodes[pos] = replace(node)

    if delta.nodes_removed:
        removed = set(delta.nodes_removed)
        next_nodes = [n for n in next_nodes if n.id not in removed]

    known = {node.id for node in next_nodes}
    next_edges = [e for e in next_edges if e.source in known and e.target in known]

    edge_index = {edge.key: pos for pos, edge in enumerate(next_edges)}
    for edge in delta.edges_added:
        if edge.source not in known or edge.target not in known:
            logger.warning(
                "Dropping edge %s -> %s (%s): unknown node id",
                edge.source,
                edge.target,
                edge.relation,
            )
            continue
        pos = edge_index.get(edge.key)
        if pos is None:
            edge_index[edge.key] = len(next_edges)
            next_edges.append(replace(edge))
        else:
            next_edges[pos] = replace(edge)

    if delta.edges_removed:
        removed_edges = set(delta.edges_removed)
        next_edges = [e for e in next_edges if e.key not in removed_edges]

    return next_nodes, next_edges


def graph_summary(nodes: Iterable[GraphNode], edges: Iterable[GraphEdge]) -> dict[str, Any]:
    return {
        "nodes": [{"id": n.id, "label": n.label, "group": n.group, "weight": n.weight} for n in nodes],
        "edges": [
            {"source": e.source, "target": e.target, "relation": e.relation, "weight": e.weight}
            for e in edges
        ],
    }
