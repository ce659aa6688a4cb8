# app/flow_builder/layout.py
"""
Auto-layout for CTA flows.

LayeredLayout is a small hierarchical layout in the spirit of dagre:
cycle breaking, longest-path ranking, barycenter ordering and fixed-spacing
coordinate assignment. Disconnected parts of the flow are laid out on their
own and packed side by side along the cross axis.
"""
import logging
from abc import ABC, abstractmethod
from collections import deque
from typing import Dict, Iterable, List, Sequence, Set, Tuple

from pydantic import BaseModel

from app.core import config
from app.flow_builder.graph import FlowStep, FlowTransition, Position

log = logging.getLogger("flowbuilder.layout")

LEFT_TO_RIGHT = "LR"
TOP_TO_BOTTOM = "TB"
DIRECTIONS = (LEFT_TO_RIGHT, TOP_TO_BOTTOM)

Edge = Tuple[str, str]


class LayoutSettings(BaseModel):
    rank_sep: float = 90.0
    node_sep: float = 50.0
    margin: float = 20.0
    default_width: float = 260.0
    default_height: float = 140.0
    ordering_iterations: int = 4

    @classmethod
    def from_config(cls) -> "LayoutSettings":
        return cls(
            rank_sep=config.LAYOUT_RANK_SEP,
            node_sep=config.LAYOUT_NODE_SEP,
            margin=config.LAYOUT_MARGIN,
            default_width=config.NODE_DEFAULT_WIDTH,
            default_height=config.NODE_DEFAULT_HEIGHT,
        )


class LayoutStrategy(ABC):
    """Computes new positions for steps; must not mutate its inputs"""

    @abstractmethod
    def layout(
        self,
        steps: Sequence[FlowStep],
        transitions: Sequence[FlowTransition],
        direction: str = LEFT_TO_RIGHT,
    ) -> List[FlowStep]:
        ...


# ────────────────────────────────────────────
# Graph helpers
# ────────────────────────────────────────────

def _edge_list(ids: Sequence[str], transitions: Iterable[FlowTransition]) -> List[Edge]:
    """Distinct (source, target) pairs between known steps, self loops dropped"""
    known = set(ids)
    edges: List[Edge] = []
    seen: Set[Edge] = set()
    for t in transitions:
        pair = (t.source, t.target)
        if t.source == t.target or t.source not in known or t.target not in known:
            continue
        if pair not in seen:
            seen.add(pair)
            edges.append(pair)
    return edges


def _adjacency(ids: Sequence[str], edges: Iterable[Edge]) -> Dict[str, List[str]]:
    adj: Dict[str, List[str]] = {v: [] for v in ids}
    for u, v in edges:
        adj[u].append(v)
    return adj


def connected_components(ids: Sequence[str], edges: Iterable[Edge]) -> List[List[str]]:
    """Weakly connected components, each in input order"""
    neighbours: Dict[str, List[str]] = {v: [] for v in ids}
    for u, v in edges:
        neighbours[u].append(v)
        neighbours[v].append(u)

    order = {v: i for i, v in enumerate(ids)}
    seen: Set[str] = set()
    components: List[List[str]] = []
    for root in ids:
        if root in seen:
            continue
        seen.add(root)
        members = [root]
        queue = deque([root])
        while queue:
            node = queue.popleft()
            for other in neighbours[node]:
                if other not in seen:
                    seen.add(other)
                    members.append(other)
                    queue.append(other)
        components.append(sorted(members, key=order.__getitem__))
    return components


def break_cycles(ids: Sequence[str], edges: Sequence[Edge]) -> List[Edge]:
    """
    Drop DFS back edges so the remaining graph is acyclic.

    The search starts from steps without incoming edges, in input order, so
    the edge that closes a loop back towards the entry is the one ignored.
    """
    adj = _adjacency(ids, edges)
    indegree = {v: 0 for v in ids}
    for _, v in edges:
        indegree[v] += 1

    white, gray, black = 0, 1, 2
    colour = {v: white for v in ids}
    back: Set[Edge] = set()
    roots = [v for v in ids if indegree[v] == 0] + [v for v in ids if indegree[v] > 0]

    for root in roots:
        if colour[root] != white:
            continue
        colour[root] = gray
        stack = [(root, iter(adj[root]))]
        while stack:
            node, children = stack[-1]
            child = next(children, None)
            if child is None:
                colour[node] = black
                stack.pop()
            elif colour[child] == gray:
                back.add((node, child))
            elif colour[child] == white:
                colour[child] = gray
                stack.append((child, iter(adj[child])))

    if back:
        log.debug(f"Ignoring {len(back)} back edge(s) while ranking")
    return [e for e in edges if e not in back]


def assign_ranks(ids: Sequence[str], edges: Sequence[Edge]) -> Dict[str, int]:
    """Longest-path layering; steps with no incoming edge get rank 0"""
    acyclic = break_cycles(ids, edges)
    adj = _adjacency(ids, acyclic)
    indegree = {v: 0 for v in ids}
    for _, v in acyclic:
        indegree[v] += 1

    rank = {v: 0 for v in ids}
    queue = deque(v for v in ids if indegree[v] == 0)
    while queue:
        node = queue.popleft()
        for child in adj[node]:
            rank[child] = max(rank[child], rank[node] + 1)
            indegree[child] -= 1
            if indegree[child] == 0:
                queue.append(child)
    return rank


def count_crossings(layers: List[List[str]], edges: Iterable[Edge], rank: Dict[str, int]) -> int:
    """Crossings between edges that join adjacent layers"""
    pos = {v: i for layer in layers for i, v in enumerate(layer)}
    by_layer: Dict[int, List[Tuple[int, int]]] = {}
    for u, v in edges:
        if rank[v] == rank[u] + 1:
            by_layer.setdefault(rank[u], []).append((pos[u], pos[v]))
        elif rank[u] == rank[v] + 1:
            by_layer.setdefault(rank[v], []).append((pos[v], pos[u]))

    crossings = 0
    for segments in by_layer.values():
        for i in range(len(segments)):
            a1, b1 = segments[i]
            for j in range(i + 1, len(segments)):
                a2, b2 = segments[j]
                if (a1 - a2) * (b1 - b2) < 0:
                    crossings += 1
    return crossings


# ────────────────────────────────────────────
# LayeredLayout
# ────────────────────────────────────────────

class LayeredLayout(LayoutStrategy):
    """Hierarchical layout (ranks along the flow direction)"""

    def __init__(self, settings: LayoutSettings = None):
        self.settings = settings or LayoutSettings.from_config()

    def layout(
        self,
        steps: Sequence[FlowStep],
        transitions: Sequence[FlowTransition],
        direction: str = LEFT_TO_RIGHT,
    ) -> List[FlowStep]:
        direction = (direction or LEFT_TO_RIGHT).upper()
        if direction not in DIRECTIONS:
            log.warning(f"Unknown layout direction '{direction}', using {LEFT_TO_RIGHT}")
            direction = LEFT_TO_RIGHT

        if not steps:
            return []

        ids = [s.id for s in steps]
        edges = _edge_list(ids, transitions)
        acyclic = break_cycles(ids, edges)
        rank = assign_ranks(ids, edges)
        sizes = {s.id: self._size(s) for s in steps}

        positions: Dict[str, Position] = {}
        cross_offset = self.settings.margin
        for component in connected_components(ids, edges):
            members = set(component)
            component_edges = [e for e in acyclic if e[0] in members]
            layers = self._order(component, component_edges, rank)
            placed, extent = self._place(layers, sizes, direction, cross_offset)
            positions.update(placed)
            cross_offset += extent + self.settings.node_sep

        log.info(f"📐 Laid out {len(steps)} step(s) {direction}")
        return [s.model_copy(update={"position": positions[s.id]}, deep=True) for s in steps]

    def _size(self, step: FlowStep) -> Tuple[float, float]:
        width = step.width or self.settings.default_width
        height = step.height or self.settings.default_height
        return width, height

    def _order(self, component: List[str], edges: List[Edge], rank: Dict[str, int]) -> List[List[str]]:
        """Barycenter sweeps, keeping the ordering with the fewest crossings"""
        depth = max(rank[v] for v in component)
        layers: List[List[str]] = [[] for _ in range(depth + 1)]
        for v in component:
            layers[rank[v]].append(v)

        preds: Dict[str, List[str]] = {v: [] for v in component}
        succs: Dict[str, List[str]] = {v: [] for v in component}
        for u, v in edges:
            succs[u].append(v)
            preds[v].append(u)

        best = [list(layer) for layer in layers]
        best_crossings = count_crossings(best, edges, rank)

        for _ in range(self.settings.ordering_iterations):
            for r in range(1, depth + 1):
                layers[r] = self._sort_layer(layers, r, preds)
            for r in range(depth - 1, -1, -1):
                layers[r] = self._sort_layer(layers, r, succs)

            crossings = count_crossings(layers, edges, rank)
            if crossings < best_crossings:
                best = [list(layer) for layer in layers]
                best_crossings = crossings
            if best_crossings == 0:
                break
        return best

    @staticmethod
    def _sort_layer(layers: List[List[str]], r: int, neighbours: Dict[str, List[str]]) -> List[str]:
        pos = {v: i for layer in layers for i, v in enumerate(layer)}

        def barycenter(v: str) -> float:
            linked = neighbours[v]
            if not linked:
                return float(pos[v])
            return sum(pos[n] for n in linked) / len(linked)

        return sorted(layers[r], key=lambda v: (barycenter(v), pos[v]))

    def _place(
        self,
        layers: List[List[str]],
        sizes: Dict[str, Tuple[float, float]],
        direction: str,
        cross_offset: float,
    ) -> Tuple[Dict[str, Position], float]:
        horizontal = direction == LEFT_TO_RIGHT

        def along(v: str) -> float:
            w, h = sizes[v]
            return w if horizontal else h

        def across(v: str) -> float:
            w, h = sizes[v]
            return h if horizontal else w

        sep = self.settings.node_sep
        extents = [sum(across(v) for v in layer) + sep * (len(layer) - 1) for layer in layers]
        extent = max(extents)

        positions: Dict[str, Position] = {}
        rank_start = self.settings.margin
        for layer, layer_extent in zip(layers, extents):
            rank_size = max(along(v) for v in layer)
            cursor = cross_offset + (extent - layer_extent) / 2
            for v in layer:
                main = rank_start + (rank_size - along(v)) / 2
                if horizontal:
                    positions[v] = Position(x=main, y=cursor)
                else:
                    positions[v] = Position(x=cursor, y=main)
                cursor += across(v) + sep
            rank_start += rank_size + self.settings.rank_sep
        return positions, extent
