"""
Connection graph expansion around a profile.

Bounded breadth-first search over ConnectionStore.neighbors_of:
- Each node is admitted once, at its shortest-hop depth from the root
- Neighbors are visited in store order (higher score first)
- Every stored edge whose two endpoints were admitted is surfaced, even if
  it did not admit either endpoint
- Cost is bounded by max_depth and the fan-out of stored connections

Also provides fewest-hop path lookup ("how is X connected to Y") and
D3.js force-directed export.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Optional

from core.connection_store import Connection, ConnectionStore
from core.errors import InvalidInput
from core.profiles import ProfileId, validate_profile_id

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GraphNode:
    profile_id: ProfileId
    depth: int


@dataclass(frozen=True)
class GraphEdge:
    """A connection plus the depth at which the expansion reached it."""
    connection: Connection
    depth: int


@dataclass
class GraphView:
    """Nodes and edges reachable from a root within a score/depth budget."""
    root_id: ProfileId
    nodes: list = field(default_factory=list)  # List[GraphNode], discovery order
    edges: list = field(default_factory=list)  # List[GraphEdge]

    @property
    def node_ids(self) -> list:
        return [n.profile_id for n in self.nodes]

    @property
    def edge_keys(self) -> list:
        return [e.connection.key for e in self.edges]

    def depth_of(self, profile_id: ProfileId) -> Optional[int]:
        for node in self.nodes:
            if node.profile_id == profile_id:
                return node.depth
        return None

    def to_dict(self) -> dict:
        return {
            "root": self.root_id,
            "nodes": [{"id": n.profile_id, "depth": n.depth} for n in self.nodes],
            "edges": [
                {**e.connection.to_dict(), "depth": e.depth}
                for e in self.edges
            ],
        }

    def to_d3(self, names: Optional[dict] = None) -> dict:
        """
        Export in D3.js force-directed format.

        Args:
            names: Optional dict of profile_id -> display name

        Returns: {
            "nodes": [{"id", "name", "type", "group", "depth"}, ...],
            "links": [{"source", "target", "score", ..., "strength"}, ...],
            "metadata": {"total_nodes", "total_connections", "center_node"},
        }
        """
        names = names or {}
        d3_nodes = []
        for node in self.nodes:
            is_root = node.profile_id == self.root_id
            d3_nodes.append({
                "id": node.profile_id,
                "name": names.get(node.profile_id, "Unknown"),
                "type": "self" if is_root else "potential",
                "group": 1 if is_root else 2,
                "depth": node.depth,
            })

        d3_links = []
        for edge in self.edges:
            conn = edge.connection
            d3_links.append({
                "source": conn.id_a,
                "target": conn.id_b,
                "score": conn.score_percent,
                "facial_score": round(conn.result.facial_score * 100),
                "voice_score": round(conn.result.voice_score * 100),
                "info_score": round(conn.result.information_score * 100),
                "confidence": conn.result.confidence_tier.value,
                "connection_type": conn.connection_type.value,
                "relationship": conn.predicted_relationship,
                "strength": conn.strength,
                "depth": edge.depth,
            })

        return {
            "nodes": d3_nodes,
            "links": d3_links,
            "metadata": {
                "total_nodes": len(d3_nodes),
                "total_connections": len(d3_links),
                "center_node": self.root_id,
            },
        }


def _check_depth(max_depth) -> None:
    if isinstance(max_depth, bool) or not isinstance(max_depth, int) or max_depth < 0:
        raise InvalidInput(f"max_depth must be a non-negative integer, got {max_depth!r}")


class GraphExpander:
    """Bounded graph queries over a ConnectionStore."""

    def __init__(self, store: ConnectionStore):
        self.store = store

    def expand(self, root_id: ProfileId, min_score: float, max_depth: int) -> GraphView:
        """
        Expand the connection graph around root_id.

        Args:
            root_id: Starting profile (depth 0)
            min_score: Minimum overall score for an edge to be followed or shown
            max_depth: Hop budget; 0 returns the root alone

        Returns:
            GraphView with nodes in discovery order and edges ordered by
            depth, then score descending

        Raises:
            InvalidInput: On a bad root id or negative max_depth
            StoreUnavailable: If a store read fails
        """
        validate_profile_id(root_id)
        _check_depth(max_depth)

        depth = {root_id: 0}
        order = [root_id]
        # First observation of each edge wins if a pair is rewritten mid-expansion
        seen_edges: dict[tuple, Connection] = {}

        frontier = [root_id]
        level = 0
        while frontier and level < max_depth:
            next_frontier = []
            for node in frontier:
                for conn in self.store.neighbors_of(node, min_score):
                    seen_edges.setdefault(conn.key, conn)
                    neighbor = conn.other(node)
                    if neighbor in depth:
                        continue
                    depth[neighbor] = level + 1
                    order.append(neighbor)
                    next_frontier.append(neighbor)
            frontier = next_frontier
            level += 1

        # Nodes on the last level were admitted but never scanned: pick up
        # edges among them (and back to shallower nodes) without admitting more
        if max_depth > 0:
            for node in frontier:
                for conn in self.store.neighbors_of(node, min_score):
                    if conn.other(node) in depth:
                        seen_edges.setdefault(conn.key, conn)

        edges = [
            GraphEdge(connection=conn, depth=max(depth[conn.id_a], depth[conn.id_b]))
            for conn in seen_edges.values()
            if conn.id_a in depth and conn.id_b in depth
        ]
        edges.sort(key=lambda e: (e.depth, -e.connection.overall_score, e.connection.key))

        view = GraphView(
            root_id=root_id,
            nodes=[GraphNode(profile_id=pid, depth=depth[pid]) for pid in order],
            edges=edges,
        )
        logger.debug(
            f"Expanded graph around {root_id!r}: {len(view.nodes)} nodes, "
            f"{len(view.edges)} edges (min_score={min_score}, max_depth={max_depth})"
        )
        return view

    def shortest_path(
        self,
        source_id: ProfileId,
        target_id: ProfileId,
        min_score: float = 0.0,
        max_depth: Optional[int] = None,
    ) -> Optional[list]:
        """
        Fewest-hop chain of connections from source_id to target_id.

        Among equally short paths, the one found through higher-scoring
        edges first wins.

        Returns: List of Connections in path order, [] if source == target,
        or None if no path exists within max_depth hops.
        """
        validate_profile_id(source_id)
        validate_profile_id(target_id)
        if max_depth is not None:
            _check_depth(max_depth)

        if source_id == target_id:
            return []

        # node -> (previous node, connection used to reach it)
        came_from = {source_id: None}
        queue = deque([(source_id, 0)])

        while queue:
            current, hops = queue.popleft()
            if max_depth is not None and hops >= max_depth:
                continue

            for conn in self.store.neighbors_of(current, min_score):
                neighbor = conn.other(current)
                if neighbor in came_from:
                    continue
                came_from[neighbor] = (current, conn)

                if neighbor == target_id:
                    return _walk_back(came_from, target_id)

                queue.append((neighbor, hops + 1))

        return None


def _walk_back(came_from: dict, target_id: ProfileId) -> list:
    path = []
    node = target_id
    while came_from[node] is not None:
        previous, conn = came_from[node]
        path.append(conn)
        node = previous
    path.reverse()
    return path
