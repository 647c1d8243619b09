"""
Snapshot validation.

Structural checks plus an END-reachability check run before any model or
tool client is created. Supervisor nodes contribute synthesized edges
(supervisor -> each member, member -> supervisor, supervisor -> END) to the
reachability check. A supervisor whose config cannot be read is skipped
here; the compiler parses supervisor configs strictly and reports it then.
"""
import logging
from collections import deque
from typing import Dict, List, Optional, Set

from agentlib.exceptions import UnreachableEndError, ValidationError
from agentlib.types import END_NODE, Snapshot

from .configs import NodeKind, normalize_node_type, peek_supervisor_members

logger = logging.getLogger(__name__)


def validate_snapshot(snapshot: Optional[Snapshot]) -> None:
    """
    Validate a graph snapshot.

    Raises:
        ValidationError: on the first structural problem found
        UnreachableEndError: when the entry node cannot reach END
    """
    if snapshot is None:
        raise ValidationError("graph snapshot is missing")
    meta = snapshot.agent_graph
    if meta is None:
        raise ValidationError("agent graph is missing from snapshot")

    entry_node = (meta.entry_node or "").strip()
    if not entry_node:
        raise ValidationError("agent graph entry node is empty")
    if meta.entry_node != entry_node:
        raise ValidationError("agent graph entry node cannot include leading or trailing spaces")

    node_keys: Set[str] = set()
    for index, snapshot_node in enumerate(snapshot.nodes):
        if snapshot_node is None or snapshot_node.node is None:
            raise ValidationError(f"graph node at index {index} is missing")
        raw_key = snapshot_node.node.node_key or ""
        node_key = raw_key.strip()
        if not node_key:
            raise ValidationError(f"graph node at index {index} has an empty node key")
        if raw_key != node_key:
            raise ValidationError(f"graph node {raw_key!r} has leading or trailing spaces")
        if node_key in node_keys:
            raise ValidationError(f"duplicate graph node key {node_key!r} at index {index}")
        node_keys.add(node_key)

    if entry_node not in node_keys:
        raise ValidationError(f"entry node {entry_node!r} was not found in graph nodes")

    adjacency: Dict[str, List[str]] = {}
    seen_edges: Set[tuple] = set()
    for index, edge in enumerate(snapshot.edges):
        if edge is None:
            raise ValidationError(f"graph edge at index {index} is missing")
        from_node = (edge.from_node or "").strip()
        to_node = (edge.to_node or "").strip()
        if not from_node or not to_node:
            raise ValidationError(f"graph edge at index {index} must include from_node and to_node")
        if edge.from_node != from_node or edge.to_node != to_node:
            raise ValidationError(
                f"graph edge {edge.from_node!r} -> {edge.to_node!r} has leading or trailing spaces"
            )
        if from_node == to_node:
            raise ValidationError(f"graph edge {from_node!r} cannot point to itself")
        if from_node not in node_keys:
            raise ValidationError(f"graph edge {from_node!r} -> {to_node!r} references unknown source node")
        if to_node != END_NODE and to_node not in node_keys:
            raise ValidationError(f"graph edge {from_node!r} -> {to_node!r} references unknown target node")
        if (from_node, to_node) in seen_edges:
            raise ValidationError(f"duplicate graph edge {from_node!r} -> {to_node!r}")
        seen_edges.add((from_node, to_node))
        adjacency.setdefault(from_node, []).append(to_node)

    for snapshot_node in snapshot.nodes:
        node = snapshot_node.node
        if normalize_node_type(node.node_type) != NodeKind.SUPERVISOR.value:
            continue
        members = peek_supervisor_members(node.config)
        if members is None:
            logger.debug(f"Skipping edge synthesis for supervisor {node.node_key!r}: unreadable config")
            continue
        for member in members:
            adjacency.setdefault(node.node_key, []).append(member)
            adjacency.setdefault(member, []).append(node.node_key)
        adjacency.setdefault(node.node_key, []).append(END_NODE)

    if not _reaches_end(entry_node, adjacency):
        raise UnreachableEndError(entry_node)


def _reaches_end(entry_node: str, adjacency: Dict[str, List[str]]) -> bool:
    visited: Set[str] = set()
    queue = deque([entry_node])
    while queue:
        current = queue.popleft()
        if current in visited:
            continue
        visited.add(current)
        for nxt in adjacency.get(current, ()):
            if nxt == END_NODE:
                return True
            if nxt not in visited:
                queue.append(nxt)
    return False
