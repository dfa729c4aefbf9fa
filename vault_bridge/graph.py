"""
Graph functions for Vault Bridge.

Contains the bounded breadth-first traversal of the link graph and the
single-hop neighbor query.
"""

import asyncio
from collections import deque

import structlog

from .models import CachedNote, Direction, GraphEdge, GraphNode, GraphResult, LinkKind, Neighbor
from .resolver import LinkResolver

logger = structlog.get_logger(__name__)


class GraphAccumulator:
    """Node and edge sets for one query.

    Nodes are keyed by note id, so adding a note twice keeps one entry.
    Edges are kept in discovery order and deduplicated on (source, target, kind).
    """

    def __init__(self) -> None:
        self.nodes: dict[str, GraphNode] = {}
        self.edges: list[GraphEdge] = []
        self._edge_keys: set[tuple[str, str, str]] = set()

    def add_node(self, note: CachedNote) -> None:
        if note.note_id not in self.nodes:
            self.nodes[note.note_id] = GraphNode(id=note.note_id, title=note.stem, group=note.folder)

    def add_edge(self, source: str, target: str, kind: LinkKind) -> None:
        if source not in self.nodes or target not in self.nodes:
            raise RuntimeError(f"Edge {source} -> {target} references an undiscovered node")
        key = (source, target, kind)
        if key not in self._edge_keys:
            self._edge_keys.add(key)
            self.edges.append(GraphEdge(source=source, target=target, kind=kind))

    def result(self) -> GraphResult:
        return GraphResult(nodes=list(self.nodes.values()), edges=self.edges)


def _kinds(refs) -> list[LinkKind]:
    kinds: list[LinkKind] = []
    for ref in refs:
        if ref.kind not in kinds:
            kinds.append(ref.kind)
    return kinds


def snapshot(resolver: LinkResolver, limit: int = 100) -> GraphResult:
    """Whole-graph view capped to the first ``limit`` notes, outgoing edges only."""
    graph = GraphAccumulator()
    for note in resolver.cache.notes()[:limit]:
        try:
            graph.add_node(note)
            for target, ref in resolver.outgoing(note):
                graph.add_node(target)
                graph.add_edge(note.note_id, target.note_id, ref.kind)
        except Exception as e:
            logger.warning("graph_note_failed", path=note.rel_path_str, error=str(e))
            continue
    return graph.result()


async def traverse(
    resolver: LinkResolver,
    start: CachedNote | None,
    max_depth: int = 1,
    direction: Direction = "both",
    snapshot_limit: int = 100,
    cancelled: asyncio.Event | None = None,
) -> GraphResult:
    """Explore the link graph breadth-first from ``start``.

    A node at depth d is expanded only while d < max_depth, so depth 0 yields
    the start node alone. Each note is expanded at most once, which also
    bounds the walk on cyclic graphs. Without a start note the result is a
    capped snapshot of the whole graph and depth is ignored.

    Args:
        resolver: Link resolver over the metadata index
        start: Note to start from, or None for a snapshot
        max_depth: Maximum hop count from start (inclusive)
        direction: "out" follows links, "in" follows backlinks, "both" does both
        snapshot_limit: Note cap for the start-less snapshot
        cancelled: Stops the walk at the next node when set

    Returns:
        GraphResult with deduplicated nodes and edges
    """
    if start is None:
        return snapshot(resolver, snapshot_limit)

    graph = GraphAccumulator()
    graph.add_node(start)
    visited: set[str] = set()
    queue: deque[tuple[CachedNote, int]] = deque([(start, 0)])

    while queue:
        if cancelled is not None and cancelled.is_set():
            logger.info("graph_traversal_cancelled", start=start.note_id, visited=len(visited))
            break

        note, depth = queue.popleft()
        if note.note_id in visited or depth > max_depth:
            continue
        visited.add(note.note_id)
        if depth == max_depth:
            continue

        if direction in ("out", "both"):
            for target, ref in resolver.outgoing(note):
                graph.add_node(target)
                graph.add_edge(note.note_id, target.note_id, ref.kind)
                if target.note_id not in visited:
                    queue.append((target, depth + 1))

        if direction in ("in", "both"):
            for source, refs in resolver.incoming(note.note_id):
                graph.add_node(source)
                for kind in _kinds(refs):
                    graph.add_edge(source.note_id, note.note_id, kind)
                if source.note_id not in visited:
                    queue.append((source, depth + 1))

        # let other requests interleave on large walks
        await asyncio.sleep(0)

    result = graph.result()
    logger.debug(
        "graph_traversed",
        start=start.note_id,
        depth=max_depth,
        direction=direction,
        nodes=len(result.nodes),
        edges=len(result.edges),
    )
    return result


def get_neighbors(resolver: LinkResolver, center: CachedNote, direction: Direction = "both") -> list[Neighbor]:
    """Immediate neighbors of a note, each listed once.

    A note that is both linked to and linking back is reported as "out".
    """
    neighbors: list[Neighbor] = []
    seen: set[str] = {center.note_id}

    if direction in ("out", "both"):
        for target, _ref in resolver.outgoing(center):
            if target.note_id in seen:
                continue
            seen.add(target.note_id)
            neighbors.append(Neighbor(path=target.note_id, title=target.stem, direction="out"))

    if direction in ("in", "both"):
        for source, _refs in resolver.incoming(center.note_id):
            if source.note_id in seen:
                continue
            seen.add(source.note_id)
            neighbors.append(Neighbor(path=source.note_id, title=source.stem, direction="in"))

    return neighbors
