"""
Location graph and distance oracle.

The graph is a static weighted undirected graph over room codes loaded once
from a JSON definition of the form ``{"nodes": [...], "edges": [[a, b, w], ...]}``.
The oracle answers distance queries for any pair of rooms, falling back from
direct edges to shortest paths to floor plan coordinates to a fixed default.
"""

import heapq
import json
import logging
import math
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from .config import CONFIG

logger = logging.getLogger(__name__)


class LocationGraph:
    """Read-only weighted undirected graph of rooms."""

    def __init__(self, nodes: Iterable[str] = (), edges: Iterable[Sequence] = ()):
        node_order = list(dict.fromkeys(nodes))
        adjacency: Dict[str, Dict[str, float]] = {node: {} for node in node_order}

        for edge in edges:
            a, b, weight = edge[0], edge[1], float(edge[2])
            if weight < 0:
                raise ValueError(f"Negative distance for edge {a}-{b}: {weight}")
            for node in (a, b):
                if node not in adjacency:
                    logger.debug(f"Edge endpoint {node} missing from node list, adding it")
                    adjacency[node] = {}
                    node_order.append(node)
            # Keep the shorter weight when an edge is listed twice
            current = adjacency[a].get(b)
            if current is None or weight < current:
                adjacency[a][b] = weight
                adjacency[b][a] = weight

        self._nodes = tuple(node_order)
        self._node_set = frozenset(node_order)
        self._adjacency = MappingProxyType(
            {node: MappingProxyType(neighbors) for node, neighbors in adjacency.items()}
        )

    @classmethod
    def from_dict(cls, graph_data: Optional[Mapping]) -> 'LocationGraph':
        if not graph_data:
            return cls()
        return cls(graph_data.get('nodes', []), graph_data.get('edges', []))

    @property
    def nodes(self) -> Tuple[str, ...]:
        return self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, node: str) -> bool:
        return node in self._node_set

    def has_node(self, node: str) -> bool:
        return node in self._node_set

    def neighbors(self, node: str) -> Mapping[str, float]:
        return self._adjacency.get(node, MappingProxyType({}))

    def edge_weight(self, a: str, b: str) -> Optional[float]:
        """Weight of the direct edge between a and b, 0 for a == b, else None."""
        if a == b:
            return 0
        return self._adjacency.get(a, {}).get(b)

    def edges(self) -> List[Tuple[str, str, float]]:
        """Each undirected edge once, in node order."""
        seen = set()
        result = []
        for a in self._nodes:
            for b, weight in self._adjacency[a].items():
                key = frozenset((a, b))
                if key not in seen:
                    seen.add(key)
                    result.append((a, b, weight))
        return result


class DistanceOracle:
    """
    Distance lookups over a LocationGraph.

    Resolution order for a pair of rooms:
    1. direct edge weight
    2. shortest path (Dijkstra) through the graph
    3. Euclidean distance between floor plan coordinates, scaled to feet
    4. the configured default distance

    A value is always returned, never None.
    """

    def __init__(self,
                 graph: LocationGraph,
                 coordinates: Optional[Mapping[str, Sequence[float]]] = None,
                 default_distance: Optional[float] = None,
                 coordinate_scale: Optional[float] = None):
        self.graph = graph
        self.coordinates = dict(coordinates or {})
        self.default_distance = (CONFIG['DEFAULT_DISTANCE']
                                 if default_distance is None else default_distance)
        self.coordinate_scale = (CONFIG['COORDINATE_SCALE']
                                 if coordinate_scale is None else coordinate_scale)
        self._source_cache: Dict[str, Tuple[Dict[str, float], Dict[str, Optional[str]]]] = {}

    def _dijkstra(self, start: str) -> Tuple[Dict[str, float], Dict[str, Optional[str]]]:
        """Single-source shortest paths from start; cached per source."""
        if start in self._source_cache:
            return self._source_cache[start]

        distances = {start: 0.0}
        previous: Dict[str, Optional[str]] = {start: None}
        visited = set()
        queue = [(0.0, start)]

        while queue:
            dist, node = heapq.heappop(queue)
            if node in visited:
                continue
            visited.add(node)
            for neighbor, weight in self.graph.neighbors(node).items():
                alt = dist + weight
                if alt < distances.get(neighbor, math.inf):
                    distances[neighbor] = alt
                    previous[neighbor] = node
                    heapq.heappush(queue, (alt, neighbor))

        self._source_cache[start] = (distances, previous)
        return distances, previous

    def shortest_path_distance(self, start: str, end: str) -> float:
        """Shortest path length, or math.inf when end is unreachable."""
        if start == end:
            return 0.0
        if not self.graph.has_node(start) or not self.graph.has_node(end):
            return math.inf
        distances, _ = self._dijkstra(start)
        return distances.get(end, math.inf)

    def shortest_path(self, start: str, end: str) -> Tuple[Optional[float], List[str]]:
        """Return (distance, route) or (None, []) when no path exists."""
        if start == end:
            return 0.0, [start]
        distance = self.shortest_path_distance(start, end)
        if math.isinf(distance):
            return None, []

        _, previous = self._dijkstra(start)
        path = []
        node: Optional[str] = end
        while node is not None:
            path.append(node)
            node = previous[node]
        path.reverse()
        return distance, path

    def coordinate_distance(self, a: str, b: str) -> Optional[float]:
        start = self.coordinates.get(a)
        end = self.coordinates.get(b)
        if start is None or end is None:
            return None
        dx = float(end[0]) - float(start[0])
        dy = float(end[1]) - float(start[1])
        return float(np.hypot(dx, dy)) * self.coordinate_scale

    def distance(self, a: str, b: str) -> float:
        direct = self.graph.edge_weight(a, b)
        if direct is not None:
            return direct

        path_distance = self.shortest_path_distance(a, b)
        if not math.isinf(path_distance):
            return path_distance

        coordinate_distance = self.coordinate_distance(a, b)
        if coordinate_distance is not None:
            return coordinate_distance

        return self.default_distance


def _read_json(path: Path) -> Optional[Dict]:
    try:
        with open(path, 'r') as f:
            return json.load(f)
    except FileNotFoundError:
        logger.error(f"Data file not found: {path}")
    except json.JSONDecodeError as e:
        logger.error(f"Error parsing {path}: {e}")
    return None


def load_graph(graph_file: Optional[Union[str, Path]] = None) -> LocationGraph:
    """
    Load the location graph from a JSON file.

    A missing or unreadable file yields an empty graph, so every distance
    degrades to the coordinate or default fallback.
    """
    path = Path(graph_file or CONFIG['GRAPH_DATA_FILE'])
    graph_data = _read_json(path)
    if graph_data is None:
        return LocationGraph()

    graph = LocationGraph.from_dict(graph_data)
    logger.info(f"Graph data loaded from {path}: {len(graph)} nodes, {len(graph.edges())} edges")
    return graph


def load_floor_plan(floor_plan_file: Optional[Union[str, Path]] = None) -> Dict[str, List[float]]:
    """Load room coordinates ``{"rooms": {room: [x, y]}}`` from a floor plan file."""
    path = Path(floor_plan_file or CONFIG['FLOOR_PLAN_FILE'])
    floor_plan = _read_json(path)
    if not floor_plan:
        return {}
    return dict(floor_plan.get('rooms', {}))
